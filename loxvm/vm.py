"""Stack-based virtual machine that runs compiled bytecode."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Iterable, TextIO

from loxvm.chunk import OpCode
from loxvm.compiler import compile_source
from loxvm.environment import GlobalEnvironment
from loxvm.natives import NativeError
from loxvm.values import (
    UNDEFINED,
    Closure,
    NativeFunction,
    Upvalue,
    format_value,
    is_falsey,
    values_equal,
)

FRAMES_MAX = 64


class LoxRuntimeError(Exception):
    """Raised when a script fails while running.

    ``trace`` lists the active calls, innermost first, as
    ``[line N] in name()`` or ``[line N] in script``.
    """

    def __init__(self, message: str, trace: Iterable[str] = ()) -> None:
        self.message = message
        self.trace = list(trace)
        super().__init__("\n".join([f"Runtime Error: {message}", *self.trace]))


class _Fault(Exception):
    """Internal signal for a runtime error raised inside the dispatch loop."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(eq=False)
class CallFrame:
    """One ongoing function call: its closure, next instruction and stack base."""

    closure: Closure
    ip: int = 0
    base: int = 0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class VM:
    """Runs scripts; globals persist across calls to ``interpret``."""

    def __init__(self, out: TextIO | None = None) -> None:
        self.out = out
        self.env = GlobalEnvironment()
        self.stack: list[Any] = []
        self.frames: list[CallFrame] = []
        self.open_upvalues: list[Upvalue] = []

    # ------------------------------------------------------------------ public

    def interpret(self, source: str) -> None:
        """Compile and run source text.

        Raises CompileError for compile errors and LoxRuntimeError when the
        script fails while running.
        """
        function = compile_source(source, self.env)
        closure = Closure(function)
        self.push(closure)
        try:
            self._call(closure, 0)
        except _Fault as fault:
            raise self._runtime_error(fault.message) from None
        self._run()

    def push(self, value: Any) -> None:
        """Push a value onto the stack."""
        self.stack.append(value)

    def pop(self) -> Any:
        """Remove and return the value on top of the stack."""
        return self.stack.pop()

    # ----------------------------------------------------------------- errors

    def _reset_stack(self) -> None:
        for upvalue in self.open_upvalues:
            upvalue.close()
        self.open_upvalues.clear()
        self.stack.clear()
        self.frames.clear()

    def _runtime_error(self, message: str) -> LoxRuntimeError:
        trace = []
        for frame in reversed(self.frames):
            function = frame.closure.function
            line = function.chunk.get_line(frame.ip - 1)
            where = "script" if function.name is None else f"{function.name}()"
            trace.append(f"[line {line}] in {where}")
        self._reset_stack()
        return LoxRuntimeError(message, trace)

    # ------------------------------------------------------------------ calls

    @staticmethod
    def _check_arity(arity: int, arg_count: int) -> None:
        if arg_count == arity:
            return
        if arity == 1:
            raise _Fault(f"Expected 1 argument but got {arg_count}.")
        raise _Fault(f"Expected {arity} arguments but got {arg_count}.")

    def _call(self, closure: Closure, arg_count: int) -> None:
        self._check_arity(closure.function.arity, arg_count)
        if len(self.frames) == FRAMES_MAX:
            raise _Fault("Stack overflow.")
        base = len(self.stack) - arg_count - 1
        self.frames.append(CallFrame(closure, 0, base))

    def _call_value(self, callee: Any, arg_count: int) -> None:
        if isinstance(callee, Closure):
            self._call(callee, arg_count)
            return
        if isinstance(callee, NativeFunction):
            self._check_arity(callee.arity, arg_count)
            first_arg = len(self.stack) - arg_count
            try:
                result = callee.function(self.stack[first_arg:])
            except NativeError as exc:
                raise _Fault(str(exc)) from None
            del self.stack[first_arg - 1:]
            self.stack.append(result)
            return
        raise _Fault("Can only call functions and classes.")

    # --------------------------------------------------------------- upvalues

    def _capture_upvalue(self, slot: int) -> Upvalue:
        for upvalue in self.open_upvalues:
            if upvalue.slot == slot:
                return upvalue
        created = Upvalue(self.stack, slot)
        self.open_upvalues.append(created)
        return created

    def _close_upvalues(self, last: int) -> None:
        still_open = []
        for upvalue in self.open_upvalues:
            if upvalue.slot >= last:
                upvalue.close()
            else:
                still_open.append(upvalue)
        self.open_upvalues = still_open

    # ---------------------------------------------------------------- reading

    @staticmethod
    def _read_byte(frame: CallFrame) -> int:
        byte = frame.closure.function.chunk.code[frame.ip]
        frame.ip += 1
        return byte

    @staticmethod
    def _read_short(frame: CallFrame) -> int:
        code = frame.closure.function.chunk.code
        value = (code[frame.ip] << 8) | code[frame.ip + 1]
        frame.ip += 2
        return value

    @staticmethod
    def _read_tribyte(frame: CallFrame) -> int:
        code = frame.closure.function.chunk.code
        ip = frame.ip
        value = (code[ip] << 16) | (code[ip + 1] << 8) | code[ip + 2]
        frame.ip += 3
        return value

    def _read_operand(self, frame: CallFrame) -> int:
        if self._read_byte(frame) == OpCode.LONG:
            return self._read_tribyte(frame)
        return self._read_byte(frame)

    def _number_operands(self) -> tuple[float, float]:
        stack = self.stack
        if not _is_number(stack[-1]) or not _is_number(stack[-2]):
            raise _Fault("Operands must be numbers.")
        b = stack.pop()
        a = stack.pop()
        return a, b

    def _write(self, text: str) -> None:
        stream = self.out if self.out is not None else sys.stdout
        stream.write(text)

    # --------------------------------------------------------------- dispatch

    def _run(self) -> None:
        stack = self.stack
        globals_ = self.env.values
        frame = self.frames[-1]
        try:
            while True:
                op = self._read_byte(frame)

                if op == OpCode.ZERO:
                    code = frame.closure.function.chunk.code
                    if frame.ip < len(code) and code[frame.ip] == OpCode.COMPZERO:
                        frame.ip += 1
                        stack.append(values_equal(stack.pop(), 0.0))
                    else:
                        stack.append(0.0)
                elif op == OpCode.ONE:
                    stack.append(1.0)
                elif op == OpCode.TWO:
                    stack.append(2.0)
                elif op == OpCode.MINUSONE:
                    stack.append(-1.0)
                elif op == OpCode.CONSTANT:
                    index = self._read_byte(frame)
                    stack.append(frame.closure.function.chunk.constants[index])
                elif op == OpCode.CONSTANT_LONG:
                    index = self._read_tribyte(frame)
                    stack.append(frame.closure.function.chunk.constants[index])
                elif op == OpCode.DUP:
                    stack.append(stack[-1])
                elif op == OpCode.NIL:
                    stack.append(None)
                elif op == OpCode.TRUE:
                    stack.append(True)
                elif op == OpCode.FALSE:
                    stack.append(False)
                elif op == OpCode.POP:
                    stack.pop()
                elif op == OpCode.POPN:
                    count = self._read_operand(frame)
                    del stack[len(stack) - count:]
                elif op == OpCode.DEFINE_GLOBAL:
                    globals_[self._read_operand(frame)] = stack.pop()
                elif op == OpCode.GET_GLOBAL:
                    value = globals_[self._read_operand(frame)]
                    if value is UNDEFINED:
                        raise _Fault("Undefined variable.")
                    stack.append(value)
                elif op == OpCode.GET_LOCAL:
                    stack.append(stack[frame.base + self._read_operand(frame)])
                elif op == OpCode.GET_UPVALUE:
                    self._read_byte(frame)
                    upvalue = frame.closure.upvalues[self._read_byte(frame)]
                    stack.append(upvalue.get())
                elif op == OpCode.SET_GLOBAL:
                    index = self._read_operand(frame)
                    if globals_[index] is UNDEFINED:
                        raise _Fault("Undefined variable.")
                    globals_[index] = stack[-1]
                elif op == OpCode.SET_LOCAL:
                    stack[frame.base + self._read_operand(frame)] = stack[-1]
                elif op == OpCode.SET_UPVALUE:
                    self._read_byte(frame)
                    upvalue = frame.closure.upvalues[self._read_byte(frame)]
                    upvalue.set(stack[-1])
                elif op == OpCode.EQUAL:
                    b = stack.pop()
                    a = stack.pop()
                    stack.append(values_equal(a, b))
                elif op == OpCode.GREATER:
                    a, b = self._number_operands()
                    stack.append(a > b)
                elif op == OpCode.LESS:
                    a, b = self._number_operands()
                    stack.append(a < b)
                elif op in (OpCode.INCREMENT, OpCode.DECREMENT):
                    if not _is_number(stack[-1]):
                        raise _Fault("Operand must be a number.")
                    stack[-1] += 1 if op == OpCode.INCREMENT else -1
                elif op == OpCode.ADD:
                    if isinstance(stack[-1], str) and isinstance(stack[-2], str):
                        b = stack.pop()
                        a = stack.pop()
                        stack.append(a + b)
                    elif _is_number(stack[-1]) and _is_number(stack[-2]):
                        b = stack.pop()
                        a = stack.pop()
                        stack.append(a + b)
                    else:
                        raise _Fault("Operands must be two numbers or two strings.")
                elif op == OpCode.SUBTRACT:
                    a, b = self._number_operands()
                    stack.append(a - b)
                elif op == OpCode.MULTIPLY:
                    a, b = self._number_operands()
                    stack.append(a * b)
                elif op == OpCode.DIVIDE:
                    if _is_number(stack[-1]) and stack[-1] == 0:
                        raise _Fault("Cannot divide by zero.")
                    a, b = self._number_operands()
                    stack.append(a / b)
                elif op == OpCode.NOT:
                    stack.append(is_falsey(stack.pop()))
                elif op == OpCode.NEGATE:
                    if not _is_number(stack[-1]):
                        raise _Fault("Operand must be a number.")
                    stack[-1] = stack[-1] * -1
                elif op == OpCode.PRINT:
                    self._write(format_value(stack.pop()) + "\n")
                elif op == OpCode.JUMP:
                    offset = self._read_short(frame)
                    frame.ip += offset
                elif op == OpCode.JUMP_IF_FALSE:
                    offset = self._read_short(frame)
                    if is_falsey(stack[-1]):
                        frame.ip += offset
                elif op == OpCode.LOOP:
                    offset = self._read_short(frame)
                    frame.ip -= offset
                elif op == OpCode.CALL:
                    arg_count = self._read_byte(frame)
                    self._call_value(stack[-1 - arg_count], arg_count)
                    frame = self.frames[-1]
                elif op == OpCode.CLOSURE:
                    constants = frame.closure.function.chunk.constants
                    if self._read_byte(frame) == OpCode.CONSTANT:
                        function = constants[self._read_byte(frame)]
                    else:
                        function = constants[self._read_tribyte(frame)]
                    closure = Closure(function)
                    stack.append(closure)
                    for position in range(closure.upvalue_count):
                        is_local = self._read_byte(frame)
                        index = self._read_byte(frame)
                        if is_local:
                            captured = self._capture_upvalue(frame.base + index)
                        else:
                            captured = frame.closure.upvalues[index]
                        closure.upvalues[position] = captured
                elif op == OpCode.CLOSE_UPVALUE:
                    self._close_upvalues(len(stack) - 1)
                    stack.pop()
                elif op == OpCode.RETURN:
                    result = stack.pop()
                    self._close_upvalues(frame.base)
                    self.frames.pop()
                    if not self.frames:
                        stack.pop()
                        return
                    del stack[frame.base:]
                    stack.append(result)
                    frame = self.frames[-1]
                else:
                    raise _Fault(f"Unknown opcode {op}.")
        except _Fault as fault:
            raise self._runtime_error(fault.message) from None