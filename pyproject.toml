[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xbpredicate"
version = "0.1.0"
description = "A small stack machine that parses and evaluates XPath-style predicates, and a parser for XPath queries built on it"
requires-python = ">=3.10"
dependencies = []
keywords = ["xpath", "predicate", "query", "stack machine", "xml"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Text Processing :: Markup :: XML",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["xbpredicate"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
