import math

import pytest

from loxvm.environment import GlobalEnvironment
from loxvm.natives import (
    NativeError,
    clock_native,
    define_natives,
    length_native,
    sqrt_native,
    type_native,
)
from loxvm.values import Closure, LoxFunction, NativeFunction


def test_define_natives_binds_all_builtins():
    env = GlobalEnvironment()
    define_natives(env)
    assert set(env.names) == {"clock", "sqrt", "type", "length"}
    for name in env.names:
        native = env.values[env.index_of(name)]
        assert isinstance(native, NativeFunction)
        assert native.name == name


def test_define_natives_arities():
    env = GlobalEnvironment()
    define_natives(env)
    arities = {name: env.values[index].arity for name, index in env.names.items()}
    assert arities == {"clock": 0, "sqrt": 1, "type": 1, "length": 1}


def test_define_natives_functions_are_callable():
    env = GlobalEnvironment()
    define_natives(env)
    native = env.values[env.index_of("type")]
    assert native.function([None]) == "<nil>"


def test_clock_is_non_decreasing():
    first = clock_native([])
    second = clock_native([])
    assert first >= 0
    assert second >= first


def test_sqrt_of_square():
    assert sqrt_native([16.0]) == 4.0


def test_sqrt_round_trip():
    root = sqrt_native([2.0])
    assert math.isclose(root * root, 2.0)


def test_sqrt_of_negative_is_nan():
    result = sqrt_native([-1.0])
    assert str(result) == "nan"


@pytest.mark.parametrize("bad", ["text", None, True])
def test_sqrt_rejects_non_numbers(bad):
    with pytest.raises(NativeError, match=r"Invalid input to sqrt\(\)\."):
        sqrt_native([bad])


@pytest.mark.parametrize(
    "value, expected",
    [
        (True, "<boolean>"),
        (False, "<boolean>"),
        (None, "<nil>"),
        (3.5, "<number>"),
        ("abc", "<string>"),
        (LoxFunction(name="f"), "<function>"),
        (NativeFunction("clock", clock_native, 0), "<builtin function>"),
    ],
)
def test_type_names(value, expected):
    assert type_native([value]) == expected


def test_type_of_closure_is_function():
    closure = Closure(LoxFunction(name="g"))
    assert type_native([closure]) == "<function>"


def test_length_of_string():
    assert length_native(["hello"]) == 5


def test_length_of_concatenation_adds():
    assert length_native(["ab" + "cde"]) == length_native(["ab"]) + length_native(["cde"])


def test_length_of_empty_string():
    assert length_native([""]) == 0


@pytest.mark.parametrize("bad", [1.0, None, False])
def test_length_rejects_non_strings(bad):
    with pytest.raises(NativeError, match=r"Invalid input to length\(\)\."):
        length_native([bad])