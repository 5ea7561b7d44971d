[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vsdiag"
version = "0.1.0"
description = "Gateway diagnostics daemon: network, CPU, memory and connectivity logging with rotation and FTP upload"
requires-python = ">=3.10"
dependencies = []
keywords = ["monitoring", "diagnostics", "gateway", "proc", "rssi", "rotating-log"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
vsdiag = "vsdiag.monitor:main"

[tool.hatch.build.targets.wheel]
packages = ["vsdiag"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
