[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "polybase"
version = "0.1.0"
description = "Inventory of printed course handouts and packs, stored in SQLite, with a command-line tool"
requires-python = ">=3.10"
dependencies = []
keywords = ["inventory", "courses", "handouts", "sqlite", "cli"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
polybase = "polybase.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["polybase"]

[tool.pytest.ini_options]
addopts = "-ra"
