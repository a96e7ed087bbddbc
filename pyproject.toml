[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tsunami"
version = "0.1.0"
description = "Building blocks for a multiplexed, padded tunnelling proxy with HTTP fronting and panel-driven user control"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "proxy",
    "tunnel",
    "padding",
    "multiplexing",
    "websocket",
    "fronting",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
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

[tool.hatch.build.targets.wheel]
packages = ["tsunami"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
