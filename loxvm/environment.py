"""Global variable storage shared by the compiler and the virtual machine."""

from __future__ import annotations

from enum import IntEnum
from typing import Any

from loxvm.values import UNDEFINED


class Access(IntEnum):
    """Whether a variable may be reassigned after its definition."""

    FIX = 0
    VAR = 1


class GlobalEnvironment:
    """Global names mapped to value slots, plus the access rules of variables.

    Slots are resolved at compile time; the VM reads and writes ``values``
    directly by index.
    """

    def __init__(self) -> None:
        self.names: dict[str, int] = {}
        self.values: list[Any] = []
        self.access: dict[int, Access] = {}
        self.local_access: dict[int, Access] = {}

    def __len__(self) -> int:
        return len(self.values)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def index_of(self, name: str) -> int:
        """Return the slot of a global, reserving an undefined one if it is new."""
        index = self.names.get(name)
        if index is not None:
            return index
        index = len(self.values)
        self.values.append(UNDEFINED)
        self.names[name] = index
        return index

    def define(self, name: str, value: Any) -> int:
        """Store a value in a fresh slot bound to the name; return the slot."""
        index = len(self.values)
        self.values.append(value)
        self.names[name] = index
        return index

    def set_access(self, index: int, access: Access) -> None:
        """Record whether the global in the given slot may be reassigned."""
        self.access[index] = Access(access)

    def access_of(self, index: int) -> Access | None:
        """Return the recorded access of a slot, or None if none was recorded."""
        return self.access.get(index)