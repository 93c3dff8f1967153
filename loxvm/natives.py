"""Built-in functions available to every script as globals."""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Sequence

from loxvm.environment import GlobalEnvironment
from loxvm.values import Closure, LoxFunction, NativeFunction


class NativeError(Exception):
    """Raised by a built-in function when it cannot handle its arguments."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def clock_native(args: Sequence[Any]) -> float:
    """Return the processor time used so far, in seconds."""
    return time.process_time()


def sqrt_native(args: Sequence[Any]) -> float:
    """Return the square root of a number; negative input gives NaN."""
    (value,) = args
    if not _is_number(value):
        raise NativeError("Invalid input to sqrt().")
    number = float(value)
    if number < 0:
        return math.nan
    return math.sqrt(number)


def type_native(args: Sequence[Any]) -> str:
    """Return the name of the argument's type, in angle brackets."""
    (value,) = args
    if isinstance(value, bool):
        return "<boolean>"
    if value is None:
        return "<nil>"
    if _is_number(value):
        return "<number>"
    if isinstance(value, str):
        return "<string>"
    if isinstance(value, (LoxFunction, Closure)):
        return "<function>"
    if isinstance(value, NativeFunction):
        return "<builtin function>"
    return "<unknown type>"


def length_native(args: Sequence[Any]) -> float:
    """Return the length of a string in bytes."""
    (value,) = args
    if not isinstance(value, str):
        raise NativeError("Invalid input to length().")
    return float(len(value.encode("utf-8")))


_NATIVES: tuple[tuple[str, Callable[[Sequence[Any]], Any], int], ...] = (
    ("clock", clock_native, 0),
    ("sqrt", sqrt_native, 1),
    ("type", type_native, 1),
    ("length", length_native, 1),
)


def define_natives(env: GlobalEnvironment) -> None:
    """Bind every built-in function to a fresh global slot of its name."""
    for name, function, arity in _NATIVES:
        env.define(name, NativeFunction(name, function, arity))