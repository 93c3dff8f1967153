import io

import pytest

from loxvm.compiler import CompileError
from loxvm.vm import FRAMES_MAX, VM, LoxRuntimeError


def run(source: str) -> str:
    out = io.StringIO()
    VM(out=out).interpret(source)
    return out.getvalue()


def runtime_error(source: str) -> LoxRuntimeError:
    with pytest.raises(LoxRuntimeError) as info:
        run(source)
    return info.value


def test_print_string_literal():
    assert run('print "hello";') == "hello\n"


def test_arithmetic_precedence():
    assert run("print 1 + 2 * 3;") == run("print 7;")
    assert run("print (1 + 2) * 3;") == run("print 9;")


def test_division_and_negation():
    assert run("print 10 / 4;") == run("print 2.5;")
    assert run("print -(3 - 5);") == run("print 2;")


def test_comparisons_print_booleans():
    assert run("print 1 < 2; print 2 <= 1; print 3 >= 3; print 1 != 1;") == (
        "true\nfalse\ntrue\nfalse\n"
    )


def test_string_concatenation_and_equality():
    assert run('print "foo" + "bar";') == "foobar\n"
    assert run('print "a" + "b" == "ab";') == "true\n"


def test_logical_operators():
    assert run('print nil or "x"; print false and "y"; print !nil;') == (
        "x\nfalse\ntrue\n"
    )


def test_ternary():
    assert run('print true ? "yes" : "no"; print nil ? "yes" : "no";') == "yes\nno\n"


def test_globals_and_locals():
    source = 'var a = "outer"; { var a = "inner"; print a; } print a;'
    assert run(source) == "inner\nouter\n"


def test_global_assignment():
    assert run("var a = 1; a = a + 4; print a;") == run("print 5;")


def test_if_else():
    assert run('if (1 > 2) print "a"; else print "b";') == "b\n"


def test_for_loop():
    source = "for (var i = 0; i < 3; i = i + 1) print i;"
    assert run(source) == run("print 0; print 1; print 2;")


def test_while_with_break():
    source = "var i = 0; while (true) { i = i + 1; if (i == 3) break; } print i;"
    assert run(source) == run("print 3;")


def test_while_with_continue():
    source = (
        "var i = 0; while (i < 5) { i = i + 1; if (i == 2) continue; print i; }"
    )
    assert run(source) == run("print 1; print 3; print 4; print 5;")


def test_match_statement():
    source = (
        'match (2) { is 1: print "one"; is 2: print "two"; is ?: print "other"; }'
    )
    assert run(source) == "two\n"


def test_function_call_and_return():
    source = "fun add(a, b) { return a + b; } print add(2, 3);"
    assert run(source) == run("print 5;")


def test_function_without_return_gives_nil():
    assert run("fun f() {} print f();") == "nil\n"


def test_print_functions():
    assert run("fun outer() {} print outer; print clock;") == (
        "<fn outer>\n<native fn>\n"
    )


def test_closure_outlives_scope():
    source = (
        'fun outer() { var x = "a"; fun inner() { return x; } return inner; }'
        " var f = outer(); print f();"
    )
    assert run(source) == "a\n"


def test_closure_counter_keeps_state():
    source = (
        "fun counter() { var n = 0; fun inc() { n = n + 1; return n; } return inc; }"
        " var c = counter(); print c(); print c();"
    )
    assert run(source) == run("print 1; print 2;")


def test_natives():
    assert run("print sqrt(16);") == run("print 4;")
    assert run('print length("abc");') == run("print 3;")
    assert run('print type(1); print type("s"); print type(nil);') == (
        "<number>\n<string>\n<nil>\n"
    )


def test_native_error_becomes_runtime_error():
    assert runtime_error('sqrt("x");').message == "Invalid input to sqrt()."


def test_undefined_variable():
    assert runtime_error("print missing;").message == "Undefined variable."
    assert runtime_error("missing = 1;").message == "Undefined variable."


def test_divide_by_zero():
    assert runtime_error("print 1 / 0;").message == "Cannot divide by zero."


def test_operand_type_errors():
    assert runtime_error('print 1 - "a";').message == "Operands must be numbers."
    assert runtime_error('print 1 < "a";').message == "Operands must be numbers."
    assert (
        runtime_error('print 1 + "a";').message
        == "Operands must be two numbers or two strings."
    )
    assert runtime_error('print -"a";').message == "Operand must be a number."


def test_arity_errors():
    assert runtime_error("fun f(a) {} f();").message == "Expected 1 argument but got 0."
    assert (
        runtime_error("fun g(a, b) {} g(1);").message
        == "Expected 2 arguments but got 1."
    )
    assert runtime_error("sqrt(1, 2);").message == "Expected 1 argument but got 2."


def test_call_non_callable():
    assert (
        runtime_error('"text"();').message == "Can only call functions and classes."
    )


def test_stack_overflow():
    error = runtime_error("fun f() { f(); } f();")
    assert error.message == "Stack overflow."
    assert len(error.trace) == FRAMES_MAX


def test_runtime_error_trace():
    error = runtime_error("fun f() {\n  return 1 - nil;\n}\nf();\n")
    assert error.trace == ["[line 2] in f()", "[line 4] in script"]
    assert str(error).startswith("Runtime Error: Operands must be numbers.")


def test_fixed_variable_cannot_be_reassigned():
    with pytest.raises(CompileError) as info:
        run("fix a = 1; a = 2;")
    assert any("Fixed variable cannot be reassigned." in e for e in info.value.errors)


def test_compile_error_is_raised():
    with pytest.raises(CompileError) as info:
        run("print ;")
    assert any("Expect expression." in e for e in info.value.errors)


def test_globals_persist_across_interprets():
    out = io.StringIO()
    vm = VM(out=out)
    vm.interpret("var a = 1;")
    vm.interpret("print a;")
    assert out.getvalue() == run("print 1;")


def test_vm_usable_after_runtime_error():
    out = io.StringIO()
    vm = VM(out=out)
    with pytest.raises(LoxRuntimeError):
        vm.interpret("print 1 / 0;")
    assert vm.stack == []
    assert vm.frames == []
    vm.interpret('print "ok";')
    assert out.getvalue() == "ok\n"


def test_stack_empty_after_success():
    vm = VM(out=io.StringIO())
    vm.interpret("var a = 1; { var b = 2; print a + b; }")
    assert vm.stack == []
    assert vm.frames == []


def test_push_and_pop():
    vm = VM()
    vm.push("a")
    vm.push("b")
    assert vm.pop() == "b"
    assert vm.pop() == "a"
    with pytest.raises(IndexError):
        vm.pop()


def test_print_goes_to_stdout_by_default(capsys):
    VM().interpret('print "out";')
    assert capsys.readouterr().out == "out\n"