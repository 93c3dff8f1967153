import io
import sys

import pytest

from loxvm.cli import main, read_source, repl, run_file
from loxvm.vm import VM


def _write(tmp_path, text, name="script.lox"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


# ------------------------------------------------------------- read_source


def test_read_source_single_line_gains_newline():
    assert read_source(["print 1;\n"]) == "print 1;\n\n"


def test_read_source_joins_continued_lines():
    lines = ["var a = 1;\\\n", "print a;\n"]
    assert read_source(lines) == "var a = 1;\nprint a;\n\n"


def test_read_source_takes_only_needed_lines():
    lines = iter(["first;\n", "second;\n"])
    assert read_source(lines) == "first;\n\n"
    assert next(lines) == "second;\n"


def test_read_source_empty_iterable_is_empty_line():
    assert read_source([]) == "\n"


def test_read_source_continuation_then_exhaustion():
    assert read_source(["a\\\n"]) == "a\n\n"


def test_read_source_blank_line_starts_with_newline():
    assert read_source(["\n", "ignored\n"]).startswith("\n")


# -------------------------------------------------------------------- repl


def test_repl_prints_result(capsys):
    repl(VM(), io.StringIO("print 1 + 2;\n\n"))
    out = capsys.readouterr().out
    assert "3\n" in out
    assert out.startswith(">>> ")


def test_repl_keeps_globals_between_inputs(capsys):
    repl(VM(), io.StringIO("var a = 5;\nprint a;\n\n"))
    assert "5\n" in capsys.readouterr().out


def test_repl_continuation_prompt(capsys):
    repl(VM(), io.StringIO("var b = 7;\\\nprint b;\n\n"))
    out = capsys.readouterr().out
    assert "... " in out
    assert "7\n" in out


def test_repl_stops_at_end_of_input(capsys):
    repl(VM(), io.StringIO("print 4;\n"))
    assert "4\n" in capsys.readouterr().out


def test_repl_reports_compile_error_and_continues(capsys):
    repl(VM(), io.StringIO("print ;\nprint 9;\n\n"))
    captured = capsys.readouterr()
    assert "Compile Error" in captured.err
    assert "9\n" in captured.out


def test_repl_reports_runtime_error(capsys):
    repl(VM(), io.StringIO("print -nil;\n\n"))
    assert "Runtime Error: Operand must be a number." in capsys.readouterr().err


# ---------------------------------------------------------------- run_file


def test_run_file_success(tmp_path, capsys):
    path = _write(tmp_path, 'print "hi";\n')
    assert run_file(VM(), path) == 0
    assert capsys.readouterr().out == "hi\n"


def test_run_file_compile_error(tmp_path, capsys):
    path = _write(tmp_path, "var = ;\n")
    assert run_file(VM(), path) == 65
    assert "Compile Error" in capsys.readouterr().err


def test_run_file_runtime_error(tmp_path, capsys):
    path = _write(tmp_path, "print x;\n")
    assert run_file(VM(), path) == 70
    assert "Undefined variable." in capsys.readouterr().err


def test_run_file_missing(tmp_path, capsys):
    path = str(tmp_path / "missing.lox")
    assert run_file(VM(), path) == 74
    assert f'Could not open file "{path}".' in capsys.readouterr().err


# -------------------------------------------------------------------- main


def test_main_too_many_arguments(capsys):
    assert main(["a.lox", "b.lox"]) == 64
    assert "Usage" in capsys.readouterr().err


def test_main_runs_script(tmp_path, capsys):
    path = _write(tmp_path, "print 1 == 1;\n")
    assert main([path]) == 0
    assert capsys.readouterr().out == "true\n"


def test_main_runtime_error_status(tmp_path):
    path = _write(tmp_path, "print 1 / 0;\n")
    assert main([path]) == 70


def test_main_without_arguments_starts_repl(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("print 2 * 3;\n\n"))
    assert main([]) == 0
    assert "6\n" in capsys.readouterr().out


@pytest.mark.parametrize("source", ["print 1;\n", "fun f() { return 1; }\nprint f();\n"])
def test_main_and_run_file_agree(tmp_path, capsys, source):
    path = _write(tmp_path, source)
    status_main = main([path])
    out_main = capsys.readouterr().out
    status_run = run_file(VM(), path)
    out_run = capsys.readouterr().out
    assert status_main == status_run == 0
    assert out_main == out_run