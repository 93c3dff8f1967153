"""Bytecode chunks: instruction bytes, constant pool and line table."""

from __future__ import annotations

from bisect import bisect_left
from enum import IntEnum
from typing import Any


class OpCode(IntEnum):
    """One-byte operation codes."""

    ZERO = 0
    ONE = 1
    TWO = 2
    MINUSONE = 3
    CONSTANT = 4
    CONSTANT_LONG = 5
    SHORT = 6
    LONG = 7
    DUP = 8
    NIL = 9
    TRUE = 10
    FALSE = 11
    POP = 12
    POPN = 13
    DEFINE_GLOBAL = 14
    GET_GLOBAL = 15
    GET_LOCAL = 16
    SET_GLOBAL = 17
    SET_LOCAL = 18
    GET_UPVALUE = 19
    SET_UPVALUE = 20
    EQUAL = 21
    GREATER = 22
    LESS = 23
    COMPZERO = 24
    INCREMENT = 25
    DECREMENT = 26
    ADD = 27
    SUBTRACT = 28
    MULTIPLY = 29
    DIVIDE = 30
    NOT = 31
    NEGATE = 32
    PRINT = 33
    JUMP = 34
    JUMP_IF_FALSE = 35
    LOOP = 36
    CALL = 37
    CLOSURE = 38
    CLOSE_UPVALUE = 39
    RETURN = 40


class Chunk:
    """A sequence of bytecode with its constants and source lines."""

    def __init__(self) -> None:
        self.code = bytearray()
        self.constants: list[Any] = []
        # Run-length line table: each source line with the last offset on it.
        self._lines: list[int] = []
        self._offsets: list[int] = []

    def __len__(self) -> int:
        return len(self.code)

    def write(self, byte: int, line: int) -> None:
        """Append one byte that came from the given source line."""
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"byte out of range: {byte}")
        offset = len(self.code)
        self.code.append(byte)
        if self._lines and self._lines[-1] == line:
            self._offsets[-1] = offset
        else:
            self._lines.append(line)
            self._offsets.append(offset)

    def add_constant(self, value: Any) -> int:
        """Add a value to the constant pool and return its index."""
        self.constants.append(value)
        return len(self.constants) - 1

    def write_constant(self, value: Any, line: int) -> None:
        """Add a constant and emit the instruction that loads it."""
        index = self.add_constant(value)
        if index > 0xFF:
            self.write(OpCode.CONSTANT_LONG, line)
            self.write((index >> 16) & 0xFF, line)
            self.write((index >> 8) & 0xFF, line)
            self.write(index & 0xFF, line)
        else:
            self.write(OpCode.CONSTANT, line)
            self.write(index, line)

    def get_line(self, offset: int) -> int:
        """Return the source line of the byte at offset, or -1 past the end."""
        if not self._offsets:
            raise IndexError("chunk has no code")
        position = bisect_left(self._offsets, offset)
        if position < len(self._lines):
            return self._lines[position]
        return -1