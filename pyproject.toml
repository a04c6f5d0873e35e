[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pklbridge"
version = "0.1.0"
description = "Decode Pkl's binary value encoding into Python objects and drive Pkl evaluators over a message channel"
requires-python = ">=3.10"
dependencies = [
    "msgpack",
]
keywords = ["pkl", "configuration", "msgpack", "evaluator", "decoding"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pklbridge"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
