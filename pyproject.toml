[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lachesis"
version = "0.1.0"
description = "Lachesis aBFT consensus: DAG event ordering, frame calculation and Atropos election"
requires-python = ">=3.10"
dependencies = []
keywords = ["consensus", "abft", "lachesis", "dag", "atropos", "distributed"]
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
    "Topic :: System :: Distributed Computing",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lachesis"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
