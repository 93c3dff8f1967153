import math

import pytest

from loxvm.chunk import Chunk
from loxvm.values import (
    UNDEFINED,
    Closure,
    LoxFunction,
    NativeFunction,
    Undefined,
    Upvalue,
    format_value,
    hash_string,
    is_falsey,
    values_equal,
)


def test_hash_of_empty_string_is_offset_basis():
    assert hash_string("") == 2166136261


def test_hash_of_single_letter():
    assert hash_string("a") == 0xE40C292C


def test_hash_str_and_bytes_agree():
    assert hash_string("hello") == hash_string(b"hello")


@pytest.mark.parametrize("text", ["x", "lox", "a longer string with spaces", "ü"])
def test_hash_fits_in_32_bits(text):
    assert 0 <= hash_string(text) < 2**32


@pytest.mark.parametrize(
    "text, expected",
    [("b", 0xE70C2DE5), ("foobar", 0xBF9CF968)],
)
def test_hash_known_values(text, expected):
    assert hash_string(text) == expected


def test_hash_depends_on_order():
    assert hash_string("abc") == hash_string("abc")
    assert hash_string("ab") == hash_string("ab")
    assert (hash_string("ab") == hash_string("ba")) is False


@pytest.mark.parametrize(
    "value, text",
    [(True, "true"), (False, "false"), (None, "nil"), (3.0, "3"), (2.5, "2.5"), ("hi", "hi")],
)
def test_format_simple_values(value, text):
    assert format_value(value) == text


def test_format_large_number_uses_exponent():
    assert format_value(1e21) == "1e+21"


def test_format_functions():
    assert format_value(LoxFunction()) == "<script>"
    assert format_value(LoxFunction(name="add")) == "<fn add>"
    assert format_value(Closure(LoxFunction(name="add"))) == "<fn add>"
    native = NativeFunction("clock", lambda args: 0.0, 0)
    assert format_value(native) == "<native fn>"


def test_format_upvalue_and_undefined():
    assert format_value(Upvalue([1.0], 0)) == "upvalue"
    assert format_value(UNDEFINED) == ""


@pytest.mark.parametrize("value", [None, False])
def test_falsey_values(value):
    assert is_falsey(value) is True


@pytest.mark.parametrize("value", [True, 0.0, "", UNDEFINED, LoxFunction()])
def test_truthy_values(value):
    assert is_falsey(value) is False


def test_values_equal_by_kind():
    assert values_equal(1.0, 1.0) is True
    assert values_equal(True, 1.0) is False
    assert values_equal(0.0, False) is False
    assert values_equal(None, None) is True
    assert values_equal(None, False) is False
    assert values_equal("a" + "b", "ab") is True
    assert values_equal("1", 1.0) is False


def test_values_equal_nan_is_not_equal():
    assert values_equal(math.nan, math.nan) is False


def test_objects_compare_by_identity():
    first = LoxFunction(name="f")
    second = LoxFunction(name="f")
    assert values_equal(first, first) is True
    assert values_equal(first, second) is False


def test_undefined_is_singleton_and_never_equal():
    assert Undefined() is UNDEFINED
    assert values_equal(UNDEFINED, UNDEFINED) is False


def test_upvalue_open_reads_and_writes_stack():
    stack = [1.0, 2.0]
    upvalue = Upvalue(stack, 1)
    assert upvalue.is_open
    assert upvalue.get() == 2.0
    upvalue.set(5.0)
    assert stack[1] == 5.0


def test_upvalue_close_detaches_from_stack():
    stack = [1.0, 2.0]
    upvalue = Upvalue(stack, 0)
    upvalue.close()
    assert not upvalue.is_open
    stack[0] = 9.0
    assert upvalue.get() == 1.0
    upvalue.set(7.0)
    assert upvalue.get() == 7.0
    assert stack[0] == 9.0


def test_closure_allocates_empty_upvalue_slots():
    function = LoxFunction(name="f", upvalue_count=3)
    closure = Closure(function)
    assert closure.upvalues == [None, None, None]
    assert closure.upvalue_count == function.upvalue_count


def test_function_gets_fresh_chunk():
    first = LoxFunction()
    second = LoxFunction()
    first.chunk.write(0, 1)
    assert len(second.chunk.code) == 0
    assert isinstance(first.chunk, Chunk) and len(first.chunk.code) == 1