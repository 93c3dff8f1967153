"""Command-line front end: an interactive prompt and a script runner."""

from __future__ import annotations

import sys
from typing import Iterable, Iterator, Sequence, TextIO

from loxvm.compiler import CompileError
from loxvm.vm import VM, LoxRuntimeError

EXIT_OK = 0
EXIT_USAGE = 64
EXIT_COMPILE_ERROR = 65
EXIT_RUNTIME_ERROR = 70
EXIT_IO_ERROR = 74

_PROMPT = ">>> "
_CONTINUATION = "... "


def _continues(raw: str) -> bool:
    # A line continues when the character before its final newline is a backslash.
    return len(raw) > 1 and raw[-2] == "\\"


def read_source(lines: Iterable[str]) -> str:
    """Assemble one input from lines, joining lines that end with a backslash.

    Only as many lines as the input needs are taken from the iterable. Each
    continued line has its backslash replaced by a newline; the last line keeps
    its own newline and gains another. An exhausted iterable ends the input
    as an empty line would.
    """
    parts: list[str] = []
    for raw in lines:
        if _continues(raw):
            parts.append(raw[:-2] + "\n")
            continue
        parts.append(raw + "\n")
        break
    else:
        parts.append("\n")
    return "".join(parts)


def _report(error: CompileError | LoxRuntimeError) -> None:
    if isinstance(error, CompileError):
        for message in error.errors:
            print(message, file=sys.stderr)
    else:
        print(str(error), file=sys.stderr)


def _prompted_lines(stdin: TextIO) -> Iterator[str]:
    sys.stdout.write(_PROMPT)
    sys.stdout.flush()
    yield stdin.readline()
    while True:
        sys.stdout.write(_CONTINUATION)
        sys.stdout.flush()
        yield stdin.readline()


def repl(vm: VM | None = None, stdin: TextIO | None = None) -> None:
    """Read and run inputs until an empty line or end of input.

    Errors are reported on standard error and the session carries on.
    """
    machine = vm if vm is not None else VM()
    stream = stdin if stdin is not None else sys.stdin
    while True:
        source = read_source(_prompted_lines(stream))
        if source.startswith("\n"):
            return
        try:
            machine.interpret(source)
        except (CompileError, LoxRuntimeError) as error:
            _report(error)


def run_file(vm: VM | None, path: str) -> int:
    """Run the script at path and return the process exit status."""
    machine = vm if vm is not None else VM()
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError:
        print(f'Could not open file "{path}".', file=sys.stderr)
        return EXIT_IO_ERROR
    try:
        source = data.decode("utf-8")
    except UnicodeDecodeError:
        print(f'Could not read file "{path}".', file=sys.stderr)
        return EXIT_IO_ERROR

    try:
        machine.interpret(source)
    except CompileError as error:
        _report(error)
        return EXIT_COMPILE_ERROR
    except LoxRuntimeError as error:
        _report(error)
        return EXIT_RUNTIME_ERROR
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Start the prompt with no arguments, or run the one script named."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        repl(VM())
        return EXIT_OK
    if len(args) == 1:
        return run_file(VM(), args[0])
    print("Usage: loxvm [script]", file=sys.stderr)
    return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())