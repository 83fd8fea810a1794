"""Command-line settings for the web server."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Sequence

_OPTION_FIELDS = {
    "p": "port",
    "l": "log_write",
    "m": "trig_mode",
    "o": "opt_linger",
    "s": "sql_num",
    "t": "thread_num",
    "c": "close_log",
    "a": "actor_model",
}


def _atoi(text: str) -> int:
    """Read a leading integer the way C's atoi does; 0 if there is none."""
    text = text.lstrip(" \t\n\r\f\v")
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    digits = ""
    for ch in text:
        if not ch.isdigit():
            break
        digits += ch
    return sign * int(digits) if digits else 0


@dataclass
class Config:
    """Server settings with their defaults."""

    port: int = 9006
    log_write: int = 0
    trig_mode: int = 0
    listen_trig_mode: int = 0
    conn_trig_mode: int = 0
    opt_linger: int = 0
    sql_num: int = 8
    thread_num: int = 8
    close_log: int = 0
    actor_model: int = 0

    def parse_arg(self, argv: Sequence[str] | None = None) -> None:
        """Apply ``-p -l -m -o -s -t -c -a`` options; unknown ones are ignored.

        ``argv`` holds the arguments without the program name.
        """
        args = list(sys.argv[1:] if argv is None else argv)
        index = 0
        while index < len(args):
            arg = args[index]
            index += 1
            if arg == "--":
                break
            if not arg.startswith("-") or arg == "-":
                continue
            pos = 1
            while pos < len(arg):
                letter = arg[pos]
                pos += 1
                field_name = _OPTION_FIELDS.get(letter)
                if field_name is None:
                    continue
                if pos < len(arg):
                    value = arg[pos:]
                elif index < len(args):
                    value = args[index]
                    index += 1
                else:
                    break
                setattr(self, field_name, _atoi(value))
                break