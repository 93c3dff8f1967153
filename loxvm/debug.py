"""Disassembler: renders bytecode as readable text."""

from __future__ import annotations

from loxvm.chunk import Chunk, OpCode
from loxvm.values import format_value

_SIMPLE = frozenset(
    {
        OpCode.ZERO,
        OpCode.ONE,
        OpCode.TWO,
        OpCode.MINUSONE,
        OpCode.DUP,
        OpCode.NIL,
        OpCode.TRUE,
        OpCode.FALSE,
        OpCode.POP,
        OpCode.EQUAL,
        OpCode.GREATER,
        OpCode.LESS,
        OpCode.COMPZERO,
        OpCode.INCREMENT,
        OpCode.DECREMENT,
        OpCode.ADD,
        OpCode.SUBTRACT,
        OpCode.MULTIPLY,
        OpCode.DIVIDE,
        OpCode.NOT,
        OpCode.NEGATE,
        OpCode.PRINT,
        OpCode.CLOSE_UPVALUE,
        OpCode.RETURN,
    }
)

_VARIABLE = frozenset(
    {
        OpCode.DEFINE_GLOBAL,
        OpCode.GET_GLOBAL,
        OpCode.GET_LOCAL,
        OpCode.SET_GLOBAL,
        OpCode.SET_LOCAL,
    }
)

_BYTE = frozenset({OpCode.GET_UPVALUE, OpCode.SET_UPVALUE, OpCode.CALL})

_JUMP_SIGN = {OpCode.JUMP: 1, OpCode.JUMP_IF_FALSE: 1, OpCode.LOOP: -1}


def _tribyte(code: bytearray, start: int) -> int:
    return (code[start] << 16) | (code[start + 1] << 8) | code[start + 2]


def _sized_operand(code: bytearray, offset: int) -> tuple[int, int]:
    """Read an operand preceded by SHORT or LONG; return it and the next offset."""
    if code[offset + 1] == OpCode.LONG:
        return _tribyte(code, offset + 2), offset + 5
    return code[offset + 2], offset + 3


def disassemble_chunk(chunk: Chunk, name: str) -> str:
    """Return a listing of every instruction in the chunk under a header."""
    lines = [f"== {name} =="]
    offset = 0
    while offset < len(chunk.code):
        text, offset = disassemble_instruction(chunk, offset)
        lines.append(text)
    return "\n".join(lines) + "\n"


def disassemble_instruction(chunk: Chunk, offset: int) -> tuple[str, int]:
    """Describe the instruction at offset; return the text and the next offset."""
    code = chunk.code
    line = chunk.get_line(offset)
    if offset > 0 and line == chunk.get_line(offset - 1):
        prefix = f"{offset:04d}    | "
    else:
        prefix = f"{offset:04d} {line:4d} "

    instruction = code[offset]
    try:
        op = OpCode(instruction)
    except ValueError:
        return f"{prefix}UNKNOWN OPCODE {instruction}", offset + 1

    name = f"OP_{op.name}"

    if op in _SIMPLE:
        return f"{prefix}{name}", offset + 1

    if op is OpCode.CONSTANT:
        index = code[offset + 1]
        value = format_value(chunk.constants[index])
        return f"{prefix}{name:<20} {index:4d} '{value}'", offset + 2

    if op is OpCode.CONSTANT_LONG:
        index = _tribyte(code, offset + 1)
        value = format_value(chunk.constants[index])
        return f"{prefix}{name:<20} {index:4d} '{value}'", offset + 4

    if op is OpCode.POPN:
        operand, following = _sized_operand(code, offset)
        return f"{prefix}{name:<20} {operand:4d}", following

    if op in _VARIABLE:
        index, following = _sized_operand(code, offset)
        return f"{prefix}{name:<20} {'VAR':>4}  {index}", following

    if op in _BYTE:
        operand = code[offset + 1]
        return f"{prefix}{name:<20} {operand:4d}", offset + 2

    if op in _JUMP_SIGN:
        jump = (code[offset + 1] << 8) | code[offset + 2]
        target = offset + 3 + _JUMP_SIGN[op] * jump
        return f"{prefix}{name:<20} {offset:4d} -> {target}", offset + 3

    if op is OpCode.CLOSURE:
        if code[offset + 1] == OpCode.CONSTANT:
            index = code[offset + 2]
            cursor = offset + 3
        else:
            index = _tribyte(code, offset + 2)
            cursor = offset + 5
        function = chunk.constants[index]
        lines = [f"{prefix}{name:<20} {index:4d}", format_value(function)]
        for _ in range(function.upvalue_count):
            is_local = code[cursor]
            slot = code[cursor + 1]
            kind = "local" if is_local else "upvalue"
            lines.append(f"{cursor:04d}    |                     {kind} {slot}")
            cursor += 2
        return "\n".join(lines), cursor

    return f"{prefix}UNKNOWN OPCODE {instruction}", offset + 1