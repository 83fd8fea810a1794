[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tinyweb"
version = "0.1.0"
description = "A small multi-threaded HTTP server with MySQL-backed login, idle timers and a rotating log, plus a web benchmark tool"
requires-python = ">=3.10"
keywords = ["http", "server", "epoll", "threadpool", "mysql", "benchmark", "webbench"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: System :: Benchmark",
]
dependencies = [
    "pymysql",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
tinyweb = "tinyweb.webserver:main"
tinyweb-bench = "tinyweb.webbench:main"

[tool.hatch.build.targets.wheel]
packages = ["tinyweb"]

[tool.hatch.build.targets.sdist]
include = ["tinyweb", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
