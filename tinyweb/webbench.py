"""A small HTTP load generator: many clients fetch one URL for a fixed time."""

from __future__ import annotations

import re
import socket
import sys
import threading
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence

PROGRAM_VERSION = "1.5"
MAX_URL_LENGTH = 1500
READ_CHUNK = 1500

USAGE = (
    "webbench [option]... URL\n"
    "  -f|--force               Don't wait for reply from server.\n"
    "  -r|--reload              Send reload request - Pragma: no-cache.\n"
    "  -t|--time <sec>          Run benchmark for <sec> seconds. Default 30.\n"
    "  -p|--proxy <server:port> Use proxy server for request.\n"
    "  -c|--clients <n>         Run <n> HTTP clients at once. Default one.\n"
    "  -9|--http09              Use HTTP/0.9 style requests.\n"
    "  -1|--http10              Use HTTP/1.0 protocol.\n"
    "  -2|--http11              Use HTTP/1.1 protocol.\n"
    "  --get                    Use GET request method.\n"
    "  --head                   Use HEAD request method.\n"
    "  --options                Use OPTIONS request method.\n"
    "  --trace                  Use TRACE request method.\n"
    "  -?|-h|--help             This information.\n"
    "  -V|--version             Display program version.\n"
)

_LEADING_INT = re.compile(r"[ \t\n\r\f\v]*([+-]?\d+)")


class BenchMethod(IntEnum):
    GET = 0
    HEAD = 1
    OPTIONS = 2
    TRACE = 3


class UsageError(Exception):
    """Bad command line or URL; ``show_usage`` asks for the help text too."""

    def __init__(self, message: str = "", show_usage: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.show_usage = show_usage


@dataclass
class BenchOptions:
    """Benchmark settings; ``http10`` is 0 for HTTP/0.9, 1 for 1.0, 2 for 1.1."""

    url: str = ""
    force: bool = False
    force_reload: bool = False
    bench_time: int = 30
    proxy_host: str | None = None
    proxy_port: int = 80
    clients: int = 1
    http10: int = 1
    method: BenchMethod = BenchMethod.GET
    show_version: bool = False

    @property
    def http_version(self) -> int:
        """The protocol level actually used, raised where the method needs it."""
        level = self.http10
        if self.force_reload and self.proxy_host is not None and level < 1:
            level = 1
        if self.method is BenchMethod.HEAD and level < 1:
            level = 1
        if self.method in (BenchMethod.OPTIONS, BenchMethod.TRACE) and level < 2:
            level = 2
        return level


@dataclass
class BenchResult:
    """Counts of finished requests, failed requests and bytes read."""

    speed: int = 0
    failed: int = 0
    bytes: int = 0

    def __add__(self, other: BenchResult) -> BenchResult:
        return BenchResult(
            self.speed + other.speed,
            self.failed + other.failed,
            self.bytes + other.bytes,
        )

    def pages_per_min(self, bench_time: int) -> int:
        return int((self.speed + self.failed) / (bench_time / 60.0))

    def bytes_per_sec(self, bench_time: int) -> int:
        return int(self.bytes / float(bench_time))

    def report(self, bench_time: int) -> str:
        return (
            f"\nSpeed={self.pages_per_min(bench_time)} pages/min, "
            f"{self.bytes_per_sec(bench_time)} bytes/sec.\n"
            f"Requests: {self.speed} susceed, {self.failed} failed.\n"
        )


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


_LONG_OPTIONS = {
    "force": False,
    "reload": False,
    "time": True,
    "help": False,
    "http09": False,
    "http10": False,
    "http11": False,
    "get": False,
    "head": False,
    "options": False,
    "trace": False,
    "version": False,
    "proxy": True,
    "clients": True,
}
_SHORT_NO_ARG = set("912Vfr?h")
_SHORT_WITH_ARG = set("tpc")
_LONG_TO_SHORT = {
    "time": "t",
    "help": "?",
    "http09": "9",
    "http10": "1",
    "http11": "2",
    "version": "V",
    "proxy": "p",
    "clients": "c",
    "force": "f",
    "reload": "r",
}
_LONG_METHODS = {
    "get": BenchMethod.GET,
    "head": BenchMethod.HEAD,
    "options": BenchMethod.OPTIONS,
    "trace": BenchMethod.TRACE,
}


def _match_long(name: str) -> str:
    if name in _LONG_OPTIONS:
        return name
    candidates = [option for option in _LONG_OPTIONS if option.startswith(name)]
    if len(candidates) == 1:
        return candidates[0]
    if not candidates:
        raise UsageError(f"webbench: unrecognized option '--{name}'", True)
    raise UsageError(f"webbench: option '--{name}' is ambiguous", True)


def _apply_proxy(options: BenchOptions, value: str) -> None:
    colon = value.rfind(":")
    options.proxy_host = value
    if colon < 0:
        return
    if colon == 0:
        raise UsageError(f"Error in option --proxy {value}: Missing hostname.")
    if colon == len(value) - 1:
        raise UsageError(f"Error in option --proxy {value} Port number is missing.")
    options.proxy_host = value[:colon]
    options.proxy_port = _atoi(value[colon + 1 :])


def _apply(options: BenchOptions, letter: str, value: str | None) -> bool:
    """Apply one short option; return True when parsing should stop (version)."""
    if letter == "f":
        options.force = True
    elif letter == "r":
        options.force_reload = True
    elif letter == "9":
        options.http10 = 0
    elif letter == "1":
        options.http10 = 1
    elif letter == "2":
        options.http10 = 2
    elif letter == "V":
        options.show_version = True
        return True
    elif letter == "t":
        options.bench_time = _atoi(value or "")
    elif letter == "p":
        _apply_proxy(options, value or "")
    elif letter == "c":
        options.clients = _atoi(value or "")
    elif letter in ("?", "h"):
        raise UsageError("", True)
    return False


def parse_args(argv: Sequence[str]) -> BenchOptions:
    """Read the command line (without the program name) into options."""
    args = list(argv)
    if not args:
        raise UsageError("", True)
    options = BenchOptions()
    positional: list[str] = []
    index = 0
    while index < len(args):
        arg = args[index]
        index += 1
        if arg == "--":
            positional.extend(args[index:])
            break
        if arg.startswith("--"):
            name, eq, inline = arg[2:].partition("=")
            full = _match_long(name)
            takes_arg = _LONG_OPTIONS[full]
            value: str | None = None
            if takes_arg:
                if eq:
                    value = inline
                elif index < len(args):
                    value = args[index]
                    index += 1
                else:
                    raise UsageError(
                        f"webbench: option '--{full}' requires an argument", True
                    )
            elif eq:
                raise UsageError(
                    f"webbench: option '--{full}' doesn't allow an argument", True
                )
            if full in _LONG_METHODS:
                options.method = _LONG_METHODS[full]
                continue
            if _apply(options, _LONG_TO_SHORT[full], value):
                return options
            continue
        if arg.startswith("-") and arg != "-":
            pos = 1
            while pos < len(arg):
                letter = arg[pos]
                pos += 1
                if letter in _SHORT_NO_ARG:
                    if _apply(options, letter, None):
                        return options
                    continue
                if letter in _SHORT_WITH_ARG:
                    if pos < len(arg):
                        value = arg[pos:]
                    elif index < len(args):
                        value = args[index]
                        index += 1
                    else:
                        raise UsageError(
                            f"webbench: option requires an argument -- '{letter}'",
                            True,
                        )
                    _apply(options, letter, value)
                    break
                raise UsageError(f"webbench: invalid option -- '{letter}'", True)
            continue
        positional.append(arg)

    if not positional:
        raise UsageError("webbench: Missing URL!", True)
    options.url = positional[0]
    if options.clients == 0:
        options.clients = 1
    if options.bench_time == 0:
        options.bench_time = 60
    return options


def build_request(url: str, options: BenchOptions) -> tuple[str, str, int]:
    """Build the request text; return it with the host and port to connect to."""
    level = options.http_version
    lines = [f"{options.method.name} "]

    if "://" not in url:
        raise UsageError(f"\n{url}: is not a valid URL.")
    if len(url) > MAX_URL_LENGTH:
        raise UsageError("URL is too long.")
    if options.proxy_host is None and url[:7].lower() != "http://":
        raise UsageError(
            "\nOnly HTTP protocol is directly supported, set --proxy for others."
        )
    rest = url[url.index("://") + 3 :]
    slash = rest.find("/")
    if slash < 0:
        raise UsageError("\nInvalid URL syntax - hostname don't ends with '/'.")

    host = ""
    port = options.proxy_port
    if options.proxy_host is None:
        colon = rest.find(":")
        if 0 <= colon < slash:
            host = rest[:colon]
            port = _atoi(rest[colon + 1 : slash]) or 80
        else:
            host = rest[:slash]
        lines.append(rest[slash:])
    else:
        lines.append(url)

    if level == 1:
        lines.append(" HTTP/1.0")
    elif level == 2:
        lines.append(" HTTP/1.1")
    lines.append("\r\n")
    if level > 0:
        lines.append(f"User-Agent: WebBench {PROGRAM_VERSION}\r\n")
    if options.proxy_host is None and level > 0:
        lines.append(f"Host: {host}\r\n")
    if options.force_reload and options.proxy_host is not None:
        lines.append("Pragma: no-cache\r\n")
    if level > 1:
        lines.append("Connection: close\r\n")
    if level > 0:
        lines.append("\r\n")

    target = options.proxy_host if options.proxy_host is not None else host
    return "".join(lines), target, port


def open_socket(host: str, port: int) -> socket.socket:
    """Connect a TCP socket to ``host``:``port``; raise OSError on failure."""
    address = socket.gethostbyname(host)
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.connect((address, port))
    except OSError:
        sock.close()
        raise
    return sock


def bench_core(host: str, port: int, request: str, options: BenchOptions) -> BenchResult:
    """Send ``request`` over fresh connections until the bench time runs out."""
    deadline = time.monotonic() + options.bench_time
    payload = request.encode("latin-1")
    level = options.http_version
    result = BenchResult()

    def remaining() -> float:
        return deadline - time.monotonic()

    while True:
        if remaining() <= 0:
            if result.failed > 0:
                result.failed -= 1
            return result
        try:
            sock = open_socket(host, port)
        except OSError:
            result.failed += 1
            continue
        try:
            sock.settimeout(max(remaining(), 0.001))
            sock.sendall(payload)
        except OSError:
            result.failed += 1
            sock.close()
            continue
        if level == 0:
            try:
                sock.shutdown(socket.SHUT_WR)
            except OSError:
                result.failed += 1
                sock.close()
                continue
        if not options.force:
            broken = False
            while remaining() > 0:
                try:
                    sock.settimeout(max(remaining(), 0.001))
                    chunk = sock.recv(READ_CHUNK)
                except OSError:
                    result.failed += 1
                    sock.close()
                    broken = True
                    break
                if not chunk:
                    break
                result.bytes += len(chunk)
            if broken:
                continue
        try:
            sock.close()
        except OSError:
            result.failed += 1
            continue
        result.speed += 1


def bench(host: str, port: int, request: str, options: BenchOptions) -> BenchResult:
    """Check the server is up, then run every client at once and add up results."""
    try:
        probe = open_socket(host, port)
    except OSError as exc:
        raise ConnectionError(
            "\nConnect to server failed. Aborting benchmark."
        ) from exc
    probe.close()

    results: list[BenchResult] = []
    results_lock = threading.Lock()

    def client() -> None:
        outcome = bench_core(host, port, request, options)
        with results_lock:
            results.append(outcome)

    workers = [
        threading.Thread(target=client, name=f"bench-client-{n}", daemon=True)
        for n in range(max(options.clients, 1))
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    return sum(results, BenchResult())


def _describe(options: BenchOptions) -> str:
    parts = [f"\nBenchmarking: {options.method.name} {options.url}"]
    level = options.http_version
    if level == 0:
        parts.append(" (using HTTP/0.9)")
    elif level == 2:
        parts.append(" (using HTTP/1.1)")
    parts.append("\n")
    parts.append("1 client" if options.clients == 1 else f"{options.clients} clients")
    parts.append(f", running {options.bench_time} sec")
    if options.force:
        parts.append(", early socket close")
    if options.proxy_host is not None:
        parts.append(f", via proxy server {options.proxy_host}:{options.proxy_port}")
    if options.force_reload:
        parts.append(", forcing reload")
    parts.append(".\n")
    return "".join(parts)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the benchmark from the command line; return the exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        options = parse_args(args)
        if options.show_version:
            print(PROGRAM_VERSION)
            return 0
        sys.stderr.write(f"Webbench - Simple Web Benchmark {PROGRAM_VERSION}\n")
        request, host, port = build_request(options.url, options)
    except UsageError as exc:
        if exc.message:
            sys.stderr.write(exc.message + "\n")
        if exc.show_usage:
            sys.stderr.write(USAGE)
        return 2

    sys.stdout.write(_describe(options))
    try:
        result = bench(host, port, request, options)
    except ConnectionError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1
    sys.stdout.write(result.report(options.bench_time))
    return 0


if __name__ == "__main__":
    sys.exit(main())