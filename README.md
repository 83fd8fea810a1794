# tinyweb

A small HTTP/1.1 server for Linux built around an epoll event loop, a
worker thread pool, a pool of MySQL connections, a sorted list of
idle-connection timers and a date-rotated log file. It serves static pages
from a document root and handles a simple login / registration flow backed
by a `user` table.

The package also ships `tinyweb-bench`, a load generator that runs many
client threads against one URL for a fixed time and reports pages per
minute, bytes per second and the number of successful and failed requests.

## Installation

```
pip install .
```

Tests:

```
pip install .[test]
pytest
```

## Running the server

```
tinyweb [-p PORT] [-l LOGWRITE] [-m TRIGMODE] [-o OPT_LINGER]
        [-s SQL_NUM] [-t THREAD_NUM] [-c CLOSE_LOG] [-a ACTOR_MODEL]
```

| Option | Meaning | Default |
| ------ | ------- | ------- |
| `-p`   | listening port | `9006` |
| `-l`   | log writing: `0` synchronous, `1` asynchronous (queue of 800 lines) | `0` |
| `-m`   | trigger mode: `0` LT+LT, `1` LT+ET, `2` ET+LT, `3` ET+ET (listening socket + connections) | `0` |
| `-o`   | graceful close (`SO_LINGER`): `0` off, `1` on | `0` |
| `-s`   | number of database connections | `8` |
| `-t`   | number of worker threads | `8` |
| `-c`   | `1` turns logging off | `0` |
| `-a`   | concurrency model: `0` proactor, `1` reactor | `0` |

Values are read like C's `atoi`; unknown options are ignored.

The server serves files from the `root` directory under the current
working directory. At start-up it opens the configured number of
connections to MySQL on `localhost:3306` and loads every row of the `user`
table (`username`, `passwd` columns) into memory; if a connection cannot be
opened it stops with `ConnectionError`.

Log lines go to `ServerLog` in the current directory, prefixed with the
date (for example `2024_05_01_ServerLog`). A new file is started each day
and every 800000 lines.

Idle connections are closed after three timer slots (15 seconds) without
traffic; timers are checked every 5 seconds on `SIGALRM`. `SIGTERM` stops
the server.

### Routes

Only `GET` and `POST` requests with version `HTTP/1.1` are accepted. The
character after the last `/` of the path picks the page:

| Path | Serves |
| ---- | ------ |
| `/`  | `judge.html` |
| `/0` | `register.html` |
| `/1` | `log.html` |
| `POST /2...` | login check: `welcome.html` or `logError.html` |
| `POST /3...` | registration: `log.html` or `registerError.html` |
| `/5` | `picture.html` |
| `/6` | `video.html` |
| `/7` | `fans.html` |
| anything else | the file of that name under the document root |

Login and registration forms post a body of the form
`user=<name>&password=<password>`.

Responses: `200 OK` for a found file, `403 Forbidden` for a file that is
not world-readable, `404 Not Found` for malformed requests and
directories, `500` for internal errors. A request for a missing file or an
empty file closes the connection without a response.

## Benchmarking

```
tinyweb-bench [option]... URL
```

| Option | Meaning |
| ------ | ------- |
| `-f`, `--force` | don't wait for the server's reply |
| `-r`, `--reload` | send `Pragma: no-cache` (through a proxy) |
| `-t`, `--time SEC` | run for `SEC` seconds (default 30; `0` means 60) |
| `-p`, `--proxy HOST:PORT` | send requests through a proxy |
| `-c`, `--clients N` | run `N` clients at once (default 1) |
| `-9`, `--http09` | HTTP/0.9 style requests |
| `-1`, `--http10` | HTTP/1.0 (default) |
| `-2`, `--http11` | HTTP/1.1 |
| `--get`, `--head`, `--options`, `--trace` | request method |
| `-?`, `-h`, `--help` | usage |
| `-V`, `--version` | program version |

`--head` raises the protocol to at least HTTP/1.0, `--options` and
`--trace` to HTTP/1.1. Without a proxy only `http://` URLs are accepted,
and the URL must have a `/` after the host.

Example, against a locally running server:

```
tinyweb-bench -c 100 -t 10 http://localhost:9006/
```

Exit status: `0` success, `1` the server could not be reached, `2` bad
arguments.

## Library use

The pieces can be used on their own:

- `tinyweb.blocking_queue.BlockingQueue` — bounded, thread-safe FIFO;
  `push` returns `False` when full, `pop(timeout)` raises `queue.Empty`
  after a timeout.
- `tinyweb.log.Log` and `tinyweb.log.get_instance()` — date-rotated log
  file with optional background writer and `debug`/`info`/`warn`/`error`.
- `tinyweb.timer.SortTimerList` — ascending list of `UtilTimer`s with
  `add_timer`, `adjust_timer`, `del_timer` and `tick(now)`; `Utils` holds
  the poller, signal and alarm helpers.
- `tinyweb.sql_pool.ConnectionPool` and `tinyweb.sql_pool.get_instance()` —
  fixed pool of database connections; `init` takes an optional `connector`
  callable, and `connection()` borrows one for the length of a `with` block.
- `tinyweb.threadpool.ThreadPool` — worker threads running queued
  requests in proactor or reactor mode; `shutdown()` stops them.
- `tinyweb.config.Config` — the server's command-line options.
- `tinyweb.http_conn.HttpConn` — per-connection HTTP request parser and
  response writer (`feed`, `process_read`, `process_write`,
  `response_bytes`); `UserTable` holds the registered users.
- `tinyweb.webserver.WebServer` — the server itself, usable as a context
  manager.
- `tinyweb.webbench` — `parse_args`, `build_request`, `bench` and
  `bench_core` behind `tinyweb-bench`.

## What it does not do

- The database account is fixed in `tinyweb.webserver`: user `lzq`,
  database `lzqdb`, with the password set by the module constant
  `PASSWORD`. There are no command-line options for them, and the server
  does not start without a reachable MySQL server.
- It runs only on Linux (it needs `select.epoll`).
- There is no TLS, no `HEAD`, `PUT` or other methods, and no request
  version other than `HTTP/1.1`.