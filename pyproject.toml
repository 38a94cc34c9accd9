[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "socksadmin"
version = "0.1.0"
description = "Building blocks and administration protocol for a SOCKS5 proxy: I/O buffers, byte-driven parsers, a select-based multiplexer, and an admin session handler and client."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "socks5",
    "proxy",
    "admin",
    "selector",
    "multiplexer",
    "protocol",
    "parser",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Environment :: Console",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
socksadmin-client = "socksadmin.admin_client:main"

[tool.hatch.build.targets.wheel]
packages = ["socksadmin"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
