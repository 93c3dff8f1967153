"""Single-pass compiler: parses source text and emits bytecode directly."""

from __future__ import annotations

from enum import IntEnum
from typing import Callable, NamedTuple

from loxvm.chunk import OpCode
from loxvm.emitter import FunctionCompiler, FunctionType
from loxvm.environment import Access, GlobalEnvironment
from loxvm.natives import define_natives
from loxvm.scanner import Scanner, Token, TokenType
from loxvm.values import LoxFunction

_MAX_ARGS = 255
_MAX_CASES = 100


class CompileError(Exception):
    """Raised when the source has one or more compile errors."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(self.errors))


class _Precedence(IntEnum):
    NONE = 0
    ASSIGNMENT = 1
    CONDITIONAL = 2
    OR = 3
    AND = 4
    EQUALITY = 5
    COMPARISON = 6
    TERM = 7
    FACTOR = 8
    UNARY = 9
    CALL = 10
    PRIMARY = 11


class _Rule(NamedTuple):
    prefix: Callable[[bool], None] | None
    infix: Callable[[bool], None] | None
    precedence: _Precedence


_NO_RULE = _Rule(None, None, _Precedence.NONE)

_SYNC_TOKENS = frozenset(
    {
        TokenType.CLASS,
        TokenType.FUN,
        TokenType.VAR,
        TokenType.FOR,
        TokenType.IF,
        TokenType.WHILE,
        TokenType.PRINT,
        TokenType.RETURN,
        TokenType.MATCH,
    }
)

_BINARY_OPS: dict[TokenType, tuple[OpCode, ...]] = {
    TokenType.PLUS: (OpCode.ADD,),
    TokenType.MINUS: (OpCode.SUBTRACT,),
    TokenType.STAR: (OpCode.MULTIPLY,),
    TokenType.SLASH: (OpCode.DIVIDE,),
    TokenType.EQUAL_EQUAL: (OpCode.EQUAL,),
    TokenType.BANG_EQUAL: (OpCode.EQUAL, OpCode.NOT),
    TokenType.GREATER: (OpCode.GREATER,),
    TokenType.GREATER_EQUAL: (OpCode.LESS, OpCode.NOT),
    TokenType.LESS: (OpCode.LESS,),
    TokenType.LESS_EQUAL: (OpCode.GREATER, OpCode.NOT),
}

_SMALL_NUMBERS = {0.0: OpCode.ZERO, 1.0: OpCode.ONE, 2.0: OpCode.TWO, -1.0: OpCode.MINUSONE}


class Compiler:
    """Compiles one source text into the top-level script function.

    Global names are resolved to slots of ``env``, so the same environment
    must be handed to the virtual machine that runs the result.
    """

    def __init__(self, source: str, env: GlobalEnvironment | None = None) -> None:
        self.source = source
        self.env = env if env is not None else GlobalEnvironment()
        self.errors: list[str] = []
        self._scanner = Scanner(source)
        self._current_token = Token(TokenType.EOF, "", 1)
        self._previous = Token(TokenType.EOF, "", 1)
        self._panic_mode = False
        self._fc: FunctionCompiler | None = None
        self._continue_jump = -1
        self._break_jump = -1
        self._loop_depth = 0
        self._rules: dict[TokenType, _Rule] = {
            TokenType.LEFT_PAREN: _Rule(self._grouping, self._call, _Precedence.CALL),
            TokenType.RIGHT_PAREN: _Rule(self._grouping, None, _Precedence.NONE),
            TokenType.MINUS: _Rule(self._unary, self._binary, _Precedence.TERM),
            TokenType.PLUS: _Rule(None, self._binary, _Precedence.TERM),
            TokenType.Q_MARK: _Rule(None, self._conditional, _Precedence.CONDITIONAL),
            TokenType.SLASH: _Rule(None, self._binary, _Precedence.FACTOR),
            TokenType.STAR: _Rule(None, self._binary, _Precedence.FACTOR),
            TokenType.BANG: _Rule(self._unary, None, _Precedence.NONE),
            TokenType.BANG_EQUAL: _Rule(None, self._binary, _Precedence.EQUALITY),
            TokenType.EQUAL_EQUAL: _Rule(None, self._binary, _Precedence.EQUALITY),
            TokenType.GREATER: _Rule(None, self._binary, _Precedence.COMPARISON),
            TokenType.GREATER_EQUAL: _Rule(None, self._binary, _Precedence.COMPARISON),
            TokenType.LESS: _Rule(None, self._binary, _Precedence.COMPARISON),
            TokenType.LESS_EQUAL: _Rule(None, self._binary, _Precedence.COMPARISON),
            TokenType.IDENTIFIER: _Rule(self._variable, None, _Precedence.NONE),
            TokenType.STRING: _Rule(self._string, None, _Precedence.NONE),
            TokenType.NUMBER: _Rule(self._number, None, _Precedence.NONE),
            TokenType.AND: _Rule(None, self._and, _Precedence.AND),
            TokenType.OR: _Rule(None, self._or, _Precedence.OR),
            TokenType.FALSE: _Rule(self._literal, None, _Precedence.NONE),
            TokenType.NIL: _Rule(self._literal, None, _Precedence.NONE),
            TokenType.TRUE: _Rule(self._literal, None, _Precedence.NONE),
        }

    # ----------------------------------------------------------------- driver

    def compile(self) -> LoxFunction:
        """Compile the whole source; raise CompileError if any error was found."""
        self._fc = FunctionCompiler(FunctionType.SCRIPT, on_error=self._error)
        define_natives(self.env)
        self._advance()
        while not self._match(TokenType.EOF):
            self._declaration()
        function = self._end_function()
        if self.errors:
            raise CompileError(self.errors)
        return function

    @property
    def _current(self) -> FunctionCompiler:
        assert self._fc is not None
        return self._fc

    # ------------------------------------------------------------ error report

    def _error_at(self, token: Token, message: str) -> None:
        if self._panic_mode:
            return
        self._panic_mode = True
        if token.type is TokenType.EOF:
            where = " at end"
        elif token.type is TokenType.ERROR:
            where = ""
        else:
            where = f" at '{token.lexeme}'"
        self.errors.append(f"Compile Error{where} [line {token.line}]: {message}")

    def _error(self, message: str) -> None:
        self._error_at(self._previous, message)

    def _error_at_current(self, message: str) -> None:
        self._error_at(self._current_token, message)

    # ---------------------------------------------------------- token handling

    def _advance(self) -> None:
        self._previous = self._current_token
        while True:
            self._current_token = self._scanner.scan_token()
            if self._current_token.type is not TokenType.ERROR:
                break
            self._error_at_current(self._current_token.lexeme)

    def _consume(self, kind: TokenType, message: str) -> None:
        if self._current_token.type is kind:
            self._advance()
            return
        self._error_at_current(message)

    def _check(self, kind: TokenType) -> bool:
        return self._current_token.type is kind

    def _match(self, kind: TokenType) -> bool:
        if not self._check(kind):
            return False
        self._advance()
        return True

    def _synchronize(self) -> None:
        self._panic_mode = False
        while self._current_token.type is not TokenType.EOF:
            if self._previous.type is TokenType.SEMICOLON:
                return
            if self._current_token.type in _SYNC_TOKENS:
                return
            self._advance()

    # ---------------------------------------------------------------- emitting

    def _emit(self, *data: int) -> None:
        for byte in data:
            self._current.emit(byte, self._previous.line)

    def _emit_return(self) -> None:
        self._emit(OpCode.NIL, OpCode.RETURN)

    def _emit_constant(self, value: object) -> None:
        self._current.chunk.write_constant(value, self._previous.line)

    def _emit_jump(self, instruction: int) -> int:
        return self._current.emit_jump(instruction, self._previous.line)

    def _emit_loop(self, loop_start: int) -> None:
        self._current.emit_loop(loop_start, self._previous.line)

    def _emit_operand(self, value: int) -> None:
        if value > 0xFF:
            self._emit(
                OpCode.LONG, (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF
            )
        else:
            self._emit(OpCode.SHORT, value)

    def _end_function(self) -> LoxFunction:
        self._emit_return()
        compiler = self._current
        self._fc = compiler.enclosing
        return compiler.function

    def _begin_scope(self) -> None:
        self._current.begin_scope()

    def _end_scope(self) -> None:
        self._current.end_scope(self._previous.line)

    # ------------------------------------------------------------- expressions

    def _rule(self, kind: TokenType) -> _Rule:
        return self._rules.get(kind, _NO_RULE)

    def _parse_precedence(self, precedence: _Precedence) -> None:
        self._advance()
        prefix = self._rule(self._previous.type).prefix
        if prefix is None:
            self._error("Expect expression.")
            return
        can_assign = precedence <= _Precedence.ASSIGNMENT
        prefix(can_assign)
        while precedence <= self._rule(self._current_token.type).precedence:
            self._advance()
            infix = self._rule(self._previous.type).infix
            if infix is not None:
                infix(can_assign)
        if can_assign and self._match(TokenType.EQUAL):
            self._error("Invalid assignment target.")

    def _expression(self) -> None:
        self._parse_precedence(_Precedence.ASSIGNMENT)

    def _number(self, can_assign: bool) -> None:
        value = float(self._previous.lexeme)
        small = _SMALL_NUMBERS.get(value)
        if small is not None:
            self._emit(small)
        else:
            self._emit_constant(value)

    def _string(self, can_assign: bool) -> None:
        self._emit_constant(self._previous.lexeme[1:-1])

    def _literal(self, can_assign: bool) -> None:
        kind = self._previous.type
        if kind is TokenType.FALSE:
            self._emit(OpCode.FALSE)
        elif kind is TokenType.NIL:
            self._emit(OpCode.NIL)
        elif kind is TokenType.TRUE:
            self._emit(OpCode.TRUE)

    def _grouping(self, can_assign: bool) -> None:
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after expression.")

    def _unary(self, can_assign: bool) -> None:
        operator = self._previous.type
        self._parse_precedence(_Precedence.UNARY)
        if operator is TokenType.BANG:
            self._emit(OpCode.NOT)
        elif operator is TokenType.MINUS:
            self._emit(OpCode.NEGATE)

    def _binary(self, can_assign: bool) -> None:
        operator = self._previous.type
        rule = self._rule(operator)
        self._parse_precedence(_Precedence(rule.precedence + 1))
        ops = _BINARY_OPS.get(operator)
        if ops is not None:
            self._emit(*ops)

    def _argument_list(self) -> int:
        count = 0
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                self._expression()
                if count == _MAX_ARGS:
                    self._error("Can't have more than 255 arguments.")
                count += 1
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after arguments.")
        return count & 0xFF

    def _call(self, can_assign: bool) -> None:
        self._emit(OpCode.CALL, self._argument_list())

    def _and(self, can_assign: bool) -> None:
        end_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._parse_precedence(_Precedence.AND)
        self._current.patch_jump(end_jump)

    def _or(self, can_assign: bool) -> None:
        else_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        end_jump = self._emit_jump(OpCode.JUMP)
        self._current.patch_jump(else_jump)
        self._emit(OpCode.POP)
        self._parse_precedence(_Precedence.OR)
        self._current.patch_jump(end_jump)

    def _conditional(self, can_assign: bool) -> None:
        false_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._expression()
        true_jump = self._emit_jump(OpCode.JUMP)
        self._current.patch_jump(false_jump)
        self._consume(
            TokenType.COLON, "Expect ':' separator between ternary branches."
        )
        self._emit(OpCode.POP)
        self._parse_precedence(_Precedence.CONDITIONAL)
        self._current.patch_jump(true_jump)

    def _variable(self, can_assign: bool) -> None:
        self._named_variable(self._previous.lexeme, can_assign)

    def _named_variable(self, name: str, can_assign: bool) -> None:
        compiler = self._current
        is_upvalue = False
        arg = compiler.resolve_local(name)
        if arg != -1:
            get_op, set_op = OpCode.GET_LOCAL, OpCode.SET_LOCAL
            access_table = self.env.local_access
        else:
            arg = compiler.resolve_upvalue(name)
            if arg != -1:
                get_op, set_op = OpCode.GET_UPVALUE, OpCode.SET_UPVALUE
                is_upvalue = True
                access_table = self.env.local_access
            else:
                arg = self.env.index_of(name)
                get_op, set_op = OpCode.GET_GLOBAL, OpCode.SET_GLOBAL
                access_table = self.env.access

        if can_assign and self._match(TokenType.EQUAL):
            index = compiler.upvalues[arg].index if is_upvalue else arg
            if access_table.get(index) == Access.FIX:
                self._error("Fixed variable cannot be reassigned.")
            self._expression()
            self._emit(set_op)
        else:
            self._emit(get_op)
        self._emit_operand(arg)

    # --------------------------------------------------------------- variables

    def _declare_variable(self) -> None:
        compiler = self._current
        if compiler.scope_depth == 0:
            return
        name = self._previous.lexeme
        for local in reversed(compiler.locals):
            if local.depth != -1 and local.depth < compiler.scope_depth:
                break
            if local.name == name:
                self._error("Already a variable with this name in this scope.")
        compiler.add_local(name)

    def _parse_variable(self, message: str) -> int:
        self._consume(TokenType.IDENTIFIER, message)
        self._declare_variable()
        if self._current.scope_depth > 0:
            return 0
        return self.env.index_of(self._previous.lexeme)

    def _mark_initialized(self, access: Access) -> None:
        compiler = self._current
        if compiler.scope_depth == 0:
            return
        compiler.locals[-1].depth = compiler.scope_depth
        self.env.local_access[len(compiler.locals) - 1] = access

    def _define_variable(self, global_index: int, access: Access) -> None:
        if self._current.scope_depth > 0:
            self._mark_initialized(access)
            return
        self._emit(OpCode.DEFINE_GLOBAL)
        self._emit_operand(global_index)
        self.env.set_access(global_index, access)

    # ------------------------------------------------------------ declarations

    def _declaration(self) -> None:
        if self._match(TokenType.VAR):
            self._var_declaration(Access.VAR)
        elif self._match(TokenType.FIX):
            self._var_declaration(Access.FIX)
        elif self._match(TokenType.FUN):
            self._fun_declaration()
        else:
            self._statement()
        if self._panic_mode:
            self._synchronize()

    def _var_declaration(self, access: Access) -> None:
        global_index = self._parse_variable("Expect variable name.")
        if self._match(TokenType.EQUAL):
            self._expression()
        else:
            self._emit(OpCode.NIL)
        self._consume(TokenType.SEMICOLON, "Expect ';' after variable declaration.")
        self._define_variable(global_index, access)

    def _fun_declaration(self) -> None:
        global_index = self._parse_variable("Expect function name")
        self._mark_initialized(Access.VAR)
        self._function(FunctionType.FUNCTION)
        self._define_variable(global_index, Access.VAR)

    def _function(self, function_type: FunctionType) -> None:
        compiler = FunctionCompiler(
            function_type,
            name=self._previous.lexeme,
            enclosing=self._fc,
            on_error=self._error,
        )
        self._fc = compiler
        self._begin_scope()

        self._consume(TokenType.LEFT_PAREN, "Expect '(' after function name.")
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                compiler.function.arity += 1
                if compiler.function.arity > _MAX_ARGS:
                    self._error_at_current("Can't have more than 255 parameters.")
                slot = self._parse_variable("Expect parameter name.")
                self._define_variable(slot, Access.VAR)
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after parameters.")
        self._consume(TokenType.LEFT_BRACE, "Expect '{' before function body.")
        self._block()

        function = self._end_function()
        self._emit(OpCode.CLOSURE)
        self._emit_constant(function)
        for upvalue in compiler.upvalues:
            self._emit(1 if upvalue.is_local else 0, upvalue.index)

    # -------------------------------------------------------------- statements

    def _statement(self) -> None:
        if self._match(TokenType.PRINT):
            self._print_statement()
        elif self._match(TokenType.IF):
            self._if_statement()
        elif self._match(TokenType.WHILE):
            self._while_statement()
        elif self._match(TokenType.FOR):
            self._for_statement()
        elif self._match(TokenType.MATCH):
            self._match_statement()
        elif self._match(TokenType.BREAK):
            self._break_statement()
        elif self._match(TokenType.CONTINUE):
            self._continue_statement()
        elif self._match(TokenType.RETURN):
            self._return_statement()
        elif self._match(TokenType.LEFT_BRACE):
            self._begin_scope()
            self._block()
            self._end_scope()
        else:
            self._expression_statement()

    def _block(self) -> None:
        while not self._check(TokenType.RIGHT_BRACE) and not self._check(TokenType.EOF):
            self._declaration()
        self._consume(TokenType.RIGHT_BRACE, "Expect '}' after block.")

    def _expression_statement(self) -> None:
        self._expression()
        self._consume(TokenType.SEMICOLON, "Expect ';' after value.")
        self._emit(OpCode.POP)

    def _print_statement(self) -> None:
        self._expression()
        self._consume(TokenType.SEMICOLON, "Expect ';' after value.")
        self._emit(OpCode.PRINT)

    def _if_statement(self) -> None:
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'if'.")
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after condition.")

        then_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._statement()

        else_jump = self._emit_jump(OpCode.JUMP)
        self._current.patch_jump(then_jump)
        self._emit(OpCode.POP)

        if self._match(TokenType.ELSE):
            self._statement()
        self._current.patch_jump(else_jump)

    def _while_statement(self) -> None:
        surround_break = self._break_jump
        surround_continue = self._continue_jump

        self._loop_depth += 1
        loop_start = len(self._current.chunk.code)
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'while'.")
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after condition.")

        exit_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._statement()

        if self._continue_jump != -1:
            self._current.patch_jump(self._continue_jump)
        self._emit_loop(loop_start)

        self._current.patch_jump(exit_jump)
        self._emit(OpCode.POP)

        if self._break_jump != -1:
            self._current.patch_jump(self._break_jump)

        self._break_jump = surround_break
        self._continue_jump = surround_continue
        self._loop_depth -= 1

    def _for_statement(self) -> None:
        surround_break = self._break_jump
        surround_continue = self._continue_jump

        self._begin_scope()
        self._loop_depth += 1
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'for'.")
        if self._match(TokenType.SEMICOLON):
            pass
        elif self._match(TokenType.VAR):
            self._var_declaration(Access.VAR)
        else:
            self._expression_statement()

        loop_start = len(self._current.chunk.code)
        exit_jump = -1
        if not self._match(TokenType.SEMICOLON):
            self._expression()
            self._consume(TokenType.SEMICOLON, "Expect ';' after loop condition.")
            exit_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
            self._emit(OpCode.POP)

        if not self._match(TokenType.RIGHT_PAREN):
            body_jump = self._emit_jump(OpCode.JUMP)
            increment_start = len(self._current.chunk.code)
            self._expression()
            self._emit(OpCode.POP)
            self._consume(TokenType.RIGHT_PAREN, "Expect ')' after for clauses.")
            self._emit_loop(loop_start)
            loop_start = increment_start
            self._current.patch_jump(body_jump)

        self._statement()

        if self._continue_jump != -1:
            self._current.patch_jump(self._continue_jump)

        self._emit_loop(loop_start)
        if exit_jump != -1:
            self._current.patch_jump(exit_jump)
            self._emit(OpCode.POP)

        if self._break_jump != -1:
            self._current.patch_jump(self._break_jump)

        self._loop_depth -= 1
        self._end_scope()

        self._break_jump = surround_break
        self._continue_jump = surround_continue

    def _match_statement(self) -> None:
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'match'.")
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after match value.")
        self._consume(TokenType.LEFT_BRACE, "Expect '{' before cases.")

        case_jumps: list[int] = []
        while self._match(TokenType.IS):
            if len(case_jumps) == _MAX_CASES:
                self._error("Too many cases in structure.")

            if self._match(TokenType.Q_MARK):
                self._consume(TokenType.COLON, "Expect ':' after default case.")
                self._emit(OpCode.POP)
                self._statement()
                if self._match(TokenType.IS):
                    self._error("Cannot have a case after the default case.")
                break

            self._emit(OpCode.DUP)
            self._expression()
            self._consume(TokenType.COLON, "Expect ':' after case value.")
            self._emit(OpCode.EQUAL)

            false_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
            self._emit(OpCode.POPN, OpCode.SHORT, 2)
            self._statement()

            case_jumps.append(self._emit_jump(OpCode.JUMP))
            self._current.patch_jump(false_jump)
            self._emit(OpCode.POP)

        self._consume(TokenType.RIGHT_BRACE, "Expect '}' after cases.")

        self._emit(OpCode.POP)
        for jump in case_jumps:
            self._current.patch_jump(jump)

    def _break_statement(self) -> None:
        if self._loop_depth == 0:
            self._error("Cannot use 'break' outside of a loop.")
        self._consume(TokenType.SEMICOLON, "Expect ';' after 'break'.")
        self._break_jump = self._emit_jump(OpCode.JUMP)

    def _continue_statement(self) -> None:
        if self._loop_depth == 0:
            self._error("Cannot use 'continue' outside of a loop.")
        self._consume(TokenType.SEMICOLON, "Expect ';' after 'continue'.")
        self._continue_jump = self._emit_jump(OpCode.JUMP)

    def _return_statement(self) -> None:
        if self._current.type is FunctionType.SCRIPT:
            self._error("Can't return from top-level code.")
        if self._match(TokenType.SEMICOLON):
            self._emit_return()
        else:
            self._expression()
            self._consume(TokenType.SEMICOLON, "Expect ';' after return value.")
            self._emit(OpCode.RETURN)


def compile_source(source: str, env: GlobalEnvironment | None = None) -> LoxFunction:
    """Compile source text into the top-level script function."""
    return Compiler(source, env).compile()