[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rollblock"
version = "0.1.0"
description = "Storage components for block-indexed state: a block journal, LMDB metadata, checksummed snapshots and a data-directory lock"
requires-python = ">=3.10"
keywords = ["blockchain", "storage", "rollback", "state", "journal", "snapshot", "lmdb"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]
dependencies = [
    "lmdb",
    "zstandard",
    "portalocker",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["rollblock"]

[tool.pytest.ini_options]
addopts = "-ra"
