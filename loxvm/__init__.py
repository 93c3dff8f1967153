"""A bytecode compiler and virtual machine for an extended Lox language."""

__version__ = "0.1.0"