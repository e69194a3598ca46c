[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bumblebee"
version = "0.1.0"
description = "Read-only package inventory scanner that emits NDJSON records and matches them against an exposure catalog."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "inventory",
    "supply-chain",
    "security",
    "npm",
    "pypi",
    "yarn",
    "ndjson",
    "exposure",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Information Technology",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bumblebee"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
