"""A small epoll-based HTTP server with MySQL-backed login, idle timers, rotating logs and a web benchmark tool."""

__version__ = "0.1.0"