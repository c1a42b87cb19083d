[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mieru"
version = "1.9.1"
description = "KCP reliable transport state machine, RTT statistics and structured logging for a proxy"
requires-python = ">=3.10"
dependencies = []
keywords = ["kcp", "proxy", "rtt", "congestion", "logging", "transport"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
    "Topic :: System :: Logging",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mieru"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
