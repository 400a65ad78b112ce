[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "raftlet"
version = "0.1.0"
description = "Raft building blocks: configuration, in-memory log stores, append-entries handling and HTTP clients for a key/value cluster"
requires-python = ">=3.10"
keywords = ["raft", "consensus", "distributed", "replication", "key-value"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.setuptools.packages.find]
include = ["raftlet*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
