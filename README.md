# loxvm

A bytecode compiler and stack-based virtual machine for a dialect of the Lox
scripting language. Source text is scanned, compiled in a single pass to
bytecode, and run on a virtual machine with call frames and closures.

## Language

The usual Lox expressions and statements are supported: `var`, `fun`, `if`,
`else`, `while`, `for`, `print`, `return`, `and`, `or`, `nil`, `true` and
`false`. The dialect adds:

- `fix` declarations: variables that cannot be reassigned after definition.
  Reassigning one is a compile error.
- A ternary conditional: `cond ? a : b`.
- `break` and `continue` inside loops.
- A `match` statement, with an optional `is ?` default case that must come
  last:

  ```
  match (x) {
      is 1: print "one";
      is 2: print "two";
      is ?: print "something else";
  }
  ```

- Built-in functions:
  - `clock()`: processor time used so far, in seconds.
  - `sqrt(n)`: square root of a number (NaN for a negative number).
  - `type(v)`: the type name, such as `<number>`, `<string>`, `<boolean>`,
    `<nil>`, `<function>` or `<builtin function>`.
  - `length(s)`: length of a string in bytes.

Division by zero is a runtime error. At most 64 calls may be active at once;
a deeper recursion fails with "Stack overflow.".

## What it does not do

The keywords `class`, `this` and `super` are reserved, but classes, instances
and methods are not implemented: there are no objects beyond strings,
functions and closures.

## Installation

```
pip install .
```

## Usage

Run a script:

```
loxvm script.lox
```

Start an interactive session by running `loxvm` with no arguments. End a
line with `\` to continue the input on the next line; an empty line or the
end of input ends the session. Globals persist from one input to the next,
and errors are reported without ending the session.

Exit codes: 64 for wrong usage, 65 for a compile error, 70 for a runtime
error and 74 when the file cannot be opened or read.

From Python:

```python
from loxvm.vm import VM

vm = VM()
vm.interpret('fun add(a, b) { return a + b; } print add(1, 2);')
```

`VM(out=...)` takes a text stream for the output of `print`; by default it
writes to standard output. `VM.interpret` raises
`loxvm.compiler.CompileError` (its `errors` attribute lists every message)
when the source does not compile, and `loxvm.vm.LoxRuntimeError` (with
`message` and a `trace` of the active calls) when execution fails.

To inspect generated bytecode, compile with `loxvm.compiler.compile_source`
and pass the chunk of the returned function to
`loxvm.debug.disassemble_chunk`, which returns the listing as text:

```python
from loxvm.compiler import compile_source
from loxvm.debug import disassemble_chunk

function = compile_source("print 1 + 2;")
print(disassemble_chunk(function.chunk, "<script>"))
```

`loxvm.scanner.scan_tokens` yields the tokens of a source text.

## Tests

```
pip install .[test]
pytest
```