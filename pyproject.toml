[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "loxvm"
version = "0.1.0"
description = "A bytecode compiler and stack-based virtual machine for an extended Lox scripting language"
requires-python = ">=3.10"
dependencies = []
keywords = ["lox", "interpreter", "bytecode", "virtual-machine", "compiler"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Interpreters",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
loxvm = "loxvm.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["loxvm"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
