"""Runtime values: nil, booleans, numbers, strings and heap objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from loxvm.chunk import Chunk

_FNV_OFFSET_BASIS = 2166136261
_FNV_PRIME = 16777619
_MASK_32 = 0xFFFFFFFF


class Undefined:
    """Marker for a global slot that has been named but never defined."""

    _instance: Undefined | None = None

    def __new__(cls) -> Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = Undefined()


@dataclass(eq=False)
class LoxFunction:
    """A compiled function: its bytecode, arity and captured-variable count."""

    name: str | None = None
    arity: int = 0
    upvalue_count: int = 0
    chunk: Chunk = field(default_factory=Chunk)


@dataclass(eq=False)
class NativeFunction:
    """A built-in function implemented in Python."""

    name: str
    function: Callable[[list[Any]], Any]
    arity: int


class Upvalue:
    """A captured variable: open while it lives on the stack, closed after."""

    __slots__ = ("_stack", "slot", "_closed")

    def __init__(self, stack: list[Any], slot: int) -> None:
        self._stack: list[Any] | None = stack
        self.slot = slot
        self._closed: Any = None

    @property
    def is_open(self) -> bool:
        return self._stack is not None

    def get(self) -> Any:
        """Return the variable's current value."""
        if self._stack is not None:
            return self._stack[self.slot]
        return self._closed

    def set(self, value: Any) -> None:
        """Assign to the captured variable."""
        if self._stack is not None:
            self._stack[self.slot] = value
        else:
            self._closed = value

    def close(self) -> None:
        """Move the value off the stack into the upvalue itself."""
        if self._stack is not None:
            self._closed = self._stack[self.slot]
            self._stack = None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"Upvalue({state}, slot={self.slot})"


@dataclass(eq=False)
class Closure:
    """A function together with the upvalues it captured."""

    function: LoxFunction
    upvalues: list[Upvalue | None] = field(init=False)

    def __post_init__(self) -> None:
        self.upvalues = [None] * self.function.upvalue_count

    @property
    def upvalue_count(self) -> int:
        return len(self.upvalues)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def hash_string(key: str | bytes) -> int:
    """Return the 32-bit FNV-1a hash of a string."""
    data = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    result = _FNV_OFFSET_BASIS
    for byte in data:
        result ^= byte
        result = (result * _FNV_PRIME) & _MASK_32
    return result


def _format_function(function: LoxFunction) -> str:
    if function.name is None:
        return "<script>"
    return f"<fn {function.name}>"


def format_value(value: Any) -> str:
    """Render a value the way the print statement shows it."""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "nil"
    if _is_number(value):
        return "%g" % value
    if isinstance(value, str):
        return value
    if isinstance(value, LoxFunction):
        return _format_function(value)
    if isinstance(value, NativeFunction):
        return "<native fn>"
    if isinstance(value, Closure):
        return _format_function(value.function)
    if isinstance(value, Upvalue):
        return "upvalue"
    return ""


def is_falsey(value: Any) -> bool:
    """Only nil and false are falsey."""
    return value is None or value is False


def values_equal(a: Any, b: Any) -> bool:
    """Compare two values by kind first, then by content or identity."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if a is None or b is None:
        return a is None and b is None
    if _is_number(a) or _is_number(b):
        return _is_number(a) and _is_number(b) and a == b
    if isinstance(a, str) or isinstance(b, str):
        return isinstance(a, str) and isinstance(b, str) and a == b
    if isinstance(a, Undefined) or isinstance(b, Undefined):
        return False
    return a is b