"""Per-function compilation state: bytecode emission, scopes and variables."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable

from loxvm.chunk import Chunk, OpCode
from loxvm.values import LoxFunction

_UINT16_MAX = 0xFFFF
_MAX_UPVALUES = 256


class FunctionType(Enum):
    """Whether the code being compiled is a function body or the top-level script."""

    FUNCTION = auto()
    SCRIPT = auto()


@dataclass
class Local:
    """A local variable slot; depth is -1 until its declaration completes."""

    name: str
    depth: int
    is_captured: bool = False


@dataclass(frozen=True)
class UpvalueRef:
    """Where a closure takes a captured variable from in its enclosing function."""

    index: int
    is_local: bool


class EmitError(Exception):
    """Raised for a compile error found while emitting code."""


class FunctionCompiler:
    """Compilation state of one function: its code, locals and upvalues.

    Errors go to ``on_error`` when one is given, and compilation carries on as
    far as it can; otherwise they are raised as ``EmitError``.
    """

    def __init__(
        self,
        function_type: FunctionType,
        name: str | None = None,
        enclosing: FunctionCompiler | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self.type = function_type
        self.enclosing = enclosing
        self.on_error = on_error
        function_name = name if function_type is not FunctionType.SCRIPT else None
        self.function = LoxFunction(name=function_name)
        self.scope_depth = 0
        # Slot 0 holds the callee and has a name no identifier can match.
        self.locals: list[Local] = [Local("", 0)]
        self.upvalues: list[UpvalueRef] = []

    def _error(self, message: str) -> None:
        if self.on_error is None:
            raise EmitError(message)
        self.on_error(message)

    @property
    def chunk(self) -> Chunk:
        return self.function.chunk

    def emit(self, byte: int, line: int) -> None:
        """Append a byte, opcode or operand, to the function's chunk."""
        self.function.chunk.write(byte, line)

    def emit_jump(self, instruction: int, line: int) -> int:
        """Emit a jump with a placeholder offset; return the operand's position."""
        self.emit(instruction, line)
        self.emit(0xFF, line)
        self.emit(0xFF, line)
        return len(self.function.chunk.code) - 2

    def patch_jump(self, offset: int) -> None:
        """Make the jump whose operand is at offset land at the current end."""
        code = self.function.chunk.code
        jump = len(code) - offset - 2
        if jump > _UINT16_MAX:
            self._error("Too much code to jump over.")
        code[offset] = (jump >> 8) & 0xFF
        code[offset + 1] = jump & 0xFF

    def emit_loop(self, loop_start: int, line: int) -> None:
        """Emit a backward jump to loop_start."""
        self.emit(OpCode.LOOP, line)
        offset = len(self.function.chunk.code) - loop_start + 2
        if offset > _UINT16_MAX:
            self._error("Loop body too large.")
        self.emit((offset >> 8) & 0xFF, line)
        self.emit(offset & 0xFF, line)

    def begin_scope(self) -> None:
        """Enter a nested block scope."""
        self.scope_depth += 1

    def end_scope(self, line: int) -> None:
        """Leave a scope, discarding or closing over its locals."""
        self.scope_depth -= 1
        while self.locals and self.locals[-1].depth > self.scope_depth:
            local = self.locals.pop()
            self.emit(OpCode.CLOSE_UPVALUE if local.is_captured else OpCode.POP, line)

    def add_local(self, name: str) -> int:
        """Declare an uninitialised local; return its slot."""
        self.locals.append(Local(name, -1))
        return len(self.locals) - 1

    def resolve_local(self, name: str) -> int:
        """Return the slot of the innermost local with this name, or -1."""
        for slot in range(len(self.locals) - 1, -1, -1):
            local = self.locals[slot]
            if local.name == name:
                if local.depth == -1:
                    self._error("Can't read local variable in its own initializer.")
                return slot
        return -1

    def add_upvalue(self, index: int, is_local: bool) -> int:
        """Record a captured variable, reusing an identical one; return its index."""
        for position, upvalue in enumerate(self.upvalues):
            if upvalue.index == index and upvalue.is_local == is_local:
                return position
        if len(self.upvalues) == _MAX_UPVALUES:
            self._error("Too many closure variables in function.")
            return 0
        self.upvalues.append(UpvalueRef(index, is_local))
        self.function.upvalue_count += 1
        return self.function.upvalue_count - 1

    def resolve_upvalue(self, name: str) -> int:
        """Find a variable of an enclosing function and capture it; -1 if global."""
        if self.enclosing is None:
            return -1
        local = self.enclosing.resolve_local(name)
        if local != -1:
            self.enclosing.locals[local].is_captured = True
            return self.add_upvalue(local & 0xFF, True)
        upvalue = self.enclosing.resolve_upvalue(name)
        if upvalue != -1:
            return self.add_upvalue(upvalue & 0xFF, False)
        return -1