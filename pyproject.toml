[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "r2net"
version = "0.1.0"
description = "Packet buffers, an HFSC scheduler and Linux I/O helpers for a software packet forwarder"
requires-python = ">=3.10"
keywords = ["networking", "packet", "hfsc", "scheduler", "epoll", "eventfd", "raw-socket", "shared-memory"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["r2net"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
