"""Arithmetic expression compiler: lexer, parser and three-address IR generator."""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
import time
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from pathlib import Path
from typing import Dict, Iterable, List, Optional, TextIO, Tuple, Union

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Diagnostic infrastructure


class Severity(Enum):
	ERROR = auto()


@dataclass(frozen=True)
class Span:
	start: int
	end: int


@dataclass
class Diagnostic:
	severity: Severity
	message: str
	span: Optional[Span] = None
	hint: Optional[str] = None


class DiagnosticEngine:
	def __init__(self) -> None:
		self._items: List[Diagnostic] = []

	@property
	def items(self) -> List[Diagnostic]:
		return self._items

	def report(self, severity: Severity, message: str, span: Optional[Span] = None, hint: Optional[str] = None) -> None:
		self._items.append(Diagnostic(severity, message, span, hint))


def combine_span(a: Span, b: Span) -> Span:
	return Span(start=a.start, end=b.end)


# ---------------------------------------------------------------------------
# Errors


class CompileError(Exception):
	"""A line of user input that cannot be translated."""

	def __init__(self, message: str, span: Optional[Span] = None, hint: Optional[str] = None) -> None:
		super().__init__(message)
		self.message = message
		self.span = span
		self.hint = hint

	def __str__(self) -> str:
		return self.message


class LexError(CompileError):
	def __init__(self, character: str, position: int) -> None:
		super().__init__(f"lex error at position {position}: character {character!r}", Span(position, position + 1))
		self.character = character
		self.position = position


class ParseError(CompileError):
	def __init__(self, reason: str, position: Optional[int] = None, hint: Optional[str] = None) -> None:
		span = Span(position, position + 1) if position is not None else None
		super().__init__(f"parse error: {reason}", span, hint)
		self.reason = reason
		self.position = position


class InternalCompilerError(RuntimeError):
	"""Broken compiler invariant. Never caused by user input."""


# ---------------------------------------------------------------------------
# Lexer


class TokenKind(Enum):
	NUMBER = auto()
	IDENT = auto()
	PLUS = auto()
	MINUS = auto()
	STAR = auto()
	SLASH = auto()
	LPAREN = auto()
	RPAREN = auto()
	EOF = auto()


SYMBOLS: Dict[str, TokenKind] = {
	"+": TokenKind.PLUS,
	"-": TokenKind.MINUS,
	"*": TokenKind.STAR,
	"/": TokenKind.SLASH,
	"(": TokenKind.LPAREN,
	")": TokenKind.RPAREN,
}

TOKEN_DISPLAY: Dict[TokenKind, str] = {
	TokenKind.NUMBER: "number",
	TokenKind.IDENT: "identifier",
	TokenKind.EOF: "end of input",
	**{kind: f"'{symbol}'" for symbol, kind in SYMBOLS.items()},
}


@dataclass(frozen=True)
class Token:
	kind: TokenKind
	text: Optional[str] = None
	position: int = 0

	@property
	def span(self) -> Span:
		return Span(self.position, self.position + (len(self.text) if self.text else 1))

	def describe(self) -> str:
		if self.text is not None:
			return f"{TOKEN_DISPLAY[self.kind]} '{self.text}'"
		return TOKEN_DISPLAY[self.kind]


def _is_digit(ch: str) -> bool:
	return "0" <= ch <= "9"


def _is_letter(ch: str) -> bool:
	return ch.isascii() and ch.isalpha()


class Lexer:
	"""Pull-based scanner over one line of text."""

	def __init__(self, source: str) -> None:
		self.source = source
		self.length = len(source)
		self.index = 0

	def get_next_token(self) -> Token:
		while not self._is_eof():
			ch = self._peek()
			if ch.isspace():
				self._consume_while(str.isspace)
			elif _is_digit(ch):
				return self._consume_number()
			elif _is_letter(ch):
				return self._consume_identifier()
			elif ch in SYMBOLS:
				start = self.index
				self._advance()
				return Token(SYMBOLS[ch], None, start)
			else:
				raise LexError(ch, self.index)
		return Token(TokenKind.EOF, None, self.index)

	def tokenize(self) -> List[Token]:
		tokens: List[Token] = []
		while True:
			token = self.get_next_token()
			tokens.append(token)
			if token.kind == TokenKind.EOF:
				return tokens

	def _consume_number(self) -> Token:
		start = self.index
		self._consume_while(_is_digit)
		# A trailing dot is accepted even without fractional digits.
		if not self._is_eof() and self._peek() == ".":
			self._advance()
			self._consume_while(_is_digit)
		return Token(TokenKind.NUMBER, self.source[start:self.index], start)

	def _consume_identifier(self) -> Token:
		start = self.index
		lexeme = self._consume_while(lambda c: _is_letter(c) or _is_digit(c) or c == "_")
		return Token(TokenKind.IDENT, lexeme, start)

	def _consume_while(self, predicate) -> str:
		start_index = self.index
		while not self._is_eof() and predicate(self._peek()):
			self._advance()
		return self.source[start_index:self.index]

	def _advance(self) -> str:
		ch = self.source[self.index]
		self.index += 1
		return ch

	def _peek(self) -> str:
		return self.source[self.index]

	def _is_eof(self) -> bool:
		return self.index >= self.length


# ---------------------------------------------------------------------------
# AST definitions


@dataclass(frozen=True)
class ASTNode:
	span: Span


@dataclass(frozen=True)
class VariableRef(ASTNode):
	name: str


@dataclass(frozen=True)
class NumberLiteral(ASTNode):
	value: float


@dataclass(frozen=True)
class BinaryExpr(ASTNode):
	left: "Expression"
	operator: str
	right: "Expression"


Expression = Union[VariableRef, NumberLiteral, BinaryExpr]

BINARY_OPERATORS: Dict[TokenKind, str] = {
	TokenKind.PLUS: "+",
	TokenKind.MINUS: "-",
	TokenKind.STAR: "*",
	TokenKind.SLASH: "/",
}


# ---------------------------------------------------------------------------
# Parser


INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
MAX_NESTING_DEPTH = 200


class Parser:
	"""Recursive-descent parser holding a single lookahead token.

	AddSub := MulDiv (('+' | '-') MulDiv)*
	MulDiv := Atom (('*' | '/') Atom)*
	Atom   := Number | Identifier | '(' AddSub ')'

	With ``integer_literals`` set, numeric literals keep only their 32-bit
	integer part, matching the older behaviour of the translator.
	"""

	def __init__(self, lexer: Lexer, *, integer_literals: bool = False) -> None:
		self.lexer = lexer
		self.integer_literals = integer_literals
		self.depth = 0
		self.current = lexer.get_next_token()

	def parse_add_sub(self) -> Expression:
		expr = self._parse_add_sub()
		if self.current.kind != TokenKind.EOF:
			if self.current.kind == TokenKind.RPAREN:
				raise ParseError("unmatched ')'", self.current.position, hint="Remove the extra ')' or add a matching '('.")
			raise ParseError(f"unexpected {self.current.describe()} after end of expression", self.current.position, hint="Operands must be joined by one of + - * /.")
		return expr

	def _parse_add_sub(self) -> Expression:
		expr = self._parse_mul_div()
		while self.current.kind in (TokenKind.PLUS, TokenKind.MINUS):
			operator = self._eat(self.current.kind)
			right = self._parse_mul_div()
			expr = BinaryExpr(span=combine_span(expr.span, right.span), left=expr, operator=BINARY_OPERATORS[operator.kind], right=right)
		return expr

	def _parse_mul_div(self) -> Expression:
		expr = self._parse_atom()
		while self.current.kind in (TokenKind.STAR, TokenKind.SLASH):
			operator = self._eat(self.current.kind)
			right = self._parse_atom()
			expr = BinaryExpr(span=combine_span(expr.span, right.span), left=expr, operator=BINARY_OPERATORS[operator.kind], right=right)
		return expr

	def _parse_atom(self) -> Expression:
		token = self.current
		if token.kind == TokenKind.NUMBER:
			self._eat(TokenKind.NUMBER)
			return NumberLiteral(span=token.span, value=self._convert_number(token))
		if token.kind == TokenKind.IDENT:
			self._eat(TokenKind.IDENT)
			return VariableRef(span=token.span, name=token.text or "")
		if token.kind == TokenKind.LPAREN:
			self._eat(TokenKind.LPAREN)
			self.depth += 1
			if self.depth > MAX_NESTING_DEPTH:
				raise ParseError("expression nested too deeply", token.position, hint=f"At most {MAX_NESTING_DEPTH} levels of parentheses are supported.")
			expr = self._parse_add_sub()
			rparen = self._eat(TokenKind.RPAREN)
			self.depth -= 1
			return replace(expr, span=combine_span(token.span, rparen.span))
		if token.kind == TokenKind.EOF:
			raise ParseError("unexpected end of input, expected a number, identifier or '('", token.position)
		raise ParseError(f"unexpected {token.describe()}, expected a number, identifier or '('", token.position)

	def _convert_number(self, token: Token) -> float:
		text = token.text or ""
		try:
			if not self.integer_literals:
				value = float(text)
				if not math.isfinite(value):
					raise ParseError(f"numeric literal '{text}' is out of range", token.position)
				return value
			value = int(text.split(".", 1)[0])
		except ValueError:
			raise ParseError(f"malformed numeric literal '{text}'", token.position) from None
		if not INT32_MIN <= value <= INT32_MAX:
			raise ParseError(f"numeric literal '{text}' is out of the 32-bit integer range", token.position)
		return float(value)

	def _eat(self, kind: TokenKind) -> Token:
		token = self.current
		if token.kind != kind:
			raise ParseError(f"unexpected token {token.describe()}, expected {TOKEN_DISPLAY[kind]}", token.position, hint=self._hint_for_expect(kind))
		self.current = self.lexer.get_next_token()
		return token

	def _hint_for_expect(self, expected: TokenKind) -> Optional[str]:
		if expected == TokenKind.RPAREN:
			return "Missing ')'. Every '(' needs a matching ')'."
		return None


# ---------------------------------------------------------------------------
# Code generation


# operator -> (opcode, temporary register prefix)
OPCODES: Dict[str, Tuple[str, str]] = {
	"+": ("add", "addtmp"),
	"-": ("sub", "subtmp"),
	"*": ("mul", "multmp"),
	"/": ("div", "divtmp"),
}

LOAD_CONST = "const"
LOAD_VAR = "load"


@dataclass(frozen=True)
class Instruction:
	dest: str
	opcode: str
	operands: Tuple[str, ...]

	def __str__(self) -> str:
		if self.opcode in (LOAD_CONST, LOAD_VAR):
			return f"{self.dest} = {self.operands[0]}"
		return f"{self.dest} = {self.opcode} {' '.join(self.operands)}"


@dataclass
class IRProgram:
	instructions: List[Instruction]
	result: str

	def lines(self) -> List[str]:
		return [str(instr) for instr in self.instructions] + [f"%result = {self.result}"]

	def text(self) -> str:
		return "\n".join(self.lines()) + "\n"


def format_number(value: float) -> str:
	return f"{value:.6f}"


class CodeGenerator:
	def __init__(self) -> None:
		self._reset()

	def _reset(self) -> None:
		self._instructions: List[Instruction] = []
		self._registers: List[str] = []
		self._next_id = 1

	def generate(self, root: Expression) -> IRProgram:
		self._reset()
		self._visit(root)
		if len(self._registers) != 1:
			raise InternalCompilerError(f"register stack holds {len(self._registers)} entries after generation, expected 1")
		return IRProgram(instructions=list(self._instructions), result=self._registers.pop())

	def _visit(self, root: Expression) -> None:
		# Post-order walk with an explicit work stack; (node, True) marks
		# a binary node whose operands are already on the register stack.
		work: List[Tuple[Expression, bool]] = [(root, False)]
		while work:
			node, operands_ready = work.pop()
			if isinstance(node, VariableRef):
				self._emit(self._allocate("x"), LOAD_VAR, f"%{node.name}")
			elif isinstance(node, NumberLiteral):
				self._emit(self._allocate("x"), LOAD_CONST, format_number(node.value))
			elif isinstance(node, BinaryExpr):
				if node.operator not in OPCODES:
					raise InternalCompilerError(f"unknown operator {node.operator!r} reached code generation")
				if operands_ready:
					right = self._pop()
					left = self._pop()
					opcode, prefix = OPCODES[node.operator]
					self._emit(self._allocate(prefix), opcode, left, right)
				else:
					work.append((node, True))
					work.append((node.right, False))
					work.append((node.left, False))
			else:
				raise InternalCompilerError(f"unknown AST node {type(node).__name__}")

	def _allocate(self, prefix: str) -> str:
		name = f"%{prefix}{self._next_id}"
		self._next_id += 1
		return name

	def _emit(self, dest: str, opcode: str, *operands: str) -> None:
		self._instructions.append(Instruction(dest, opcode, operands))
		self._registers.append(dest)

	def _pop(self) -> str:
		if not self._registers:
			raise InternalCompilerError("register stack underflow")
		return self._registers.pop()


# ---------------------------------------------------------------------------
# Compilation pipeline


@dataclass
class CompilationArtifacts:
	source: str
	tokens: List[Token]
	ast: Optional[Expression]
	program: Optional[IRProgram]
	diagnostics: List[Diagnostic] = field(default_factory=list)
	duration_ms: float = 0.0

	@property
	def ok(self) -> bool:
		return self.program is not None


def parse_line(source: str, *, integer_literals: bool = False) -> Expression:
	return Parser(Lexer(source), integer_literals=integer_literals).parse_add_sub()


def translate(source: str, *, integer_literals: bool = False) -> str:
	"""Translate one line into IR text. Raises LexError or ParseError."""
	ast = parse_line(source, integer_literals=integer_literals)
	return CodeGenerator().generate(ast).text()


class ExpressionCompilerEngine:
	def __init__(self, *, integer_literals: bool = False) -> None:
		self.integer_literals = integer_literals

	def compile(self, source: str) -> CompilationArtifacts:
		diagnostics = DiagnosticEngine()
		start = time.perf_counter()
		tokens: List[Token] = []
		ast: Optional[Expression] = None
		program: Optional[IRProgram] = None
		try:
			tokens = Lexer(source).tokenize()
			ast = parse_line(source, integer_literals=self.integer_literals)
			program = CodeGenerator().generate(ast)
		except CompileError as exc:
			logger.debug("compile failed for %r: %s", source, exc)
			ast = None
			diagnostics.report(Severity.ERROR, exc.message, exc.span, hint=exc.hint)
		duration_ms = (time.perf_counter() - start) * 1000
		logger.debug("compiled %r: %d tokens in %.3f ms", source, len(tokens), duration_ms)
		return CompilationArtifacts(source=source, tokens=tokens, ast=ast, program=program, diagnostics=diagnostics.items, duration_ms=duration_ms)


# ---------------------------------------------------------------------------
# Command line driver


def span_to_dict(span: Optional[Span]) -> Optional[Dict[str, int]]:
	if span is None:
		return None
	return {"start": span.start, "end": span.end}


def ast_to_dict(root: Expression) -> Dict[str, object]:
	"""Flatten the tree into a node table in post-order.

	Binary nodes refer to their operands by id, so the result stays
	shallow however deep the expression is.
	"""
	nodes: List[Dict[str, object]] = []
	ids: List[int] = []
	work: List[Tuple[Expression, bool]] = [(root, False)]
	while work:
		node, operands_ready = work.pop()
		if isinstance(node, VariableRef):
			fields: Dict[str, object] = {"name": node.name}
		elif isinstance(node, NumberLiteral):
			fields = {"value": node.value}
		elif isinstance(node, BinaryExpr):
			if not operands_ready:
				work.append((node, True))
				work.append((node.right, False))
				work.append((node.left, False))
				continue
			right = ids.pop()
			left = ids.pop()
			fields = {"operator": node.operator, "left": left, "right": right}
		else:
			raise InternalCompilerError(f"unknown AST node {type(node).__name__}")
		node_id = len(nodes)
		nodes.append({"id": node_id, "_type": type(node).__name__, "span": span_to_dict(node.span), **fields})
		ids.append(node_id)
	return {"root": ids.pop(), "nodes": nodes}


def _render(artifacts: CompilationArtifacts, emit: str) -> str:
	if emit == "tokens":
		return "\n".join(f"{t.kind.name}" + (f" {t.text}" if t.text is not None else "") for t in artifacts.tokens)
	if emit == "ast":
		return json.dumps(ast_to_dict(artifacts.ast), indent=2)
	return artifacts.program.text().rstrip("\n")


def process_lines(lines: Iterable[str], engine: ExpressionCompilerEngine, out: TextIO, err: TextIO, *, emit: str = "ir", prompt: str = "") -> int:
	failures = 0
	if prompt:
		out.write(prompt)
		out.flush()
	for raw in lines:
		line = raw.rstrip("\r\n")
		if line.strip():
			artifacts = engine.compile(line)
			if artifacts.ok:
				print(_render(artifacts, emit), file=out)
			else:
				failures += 1
				for diagnostic in artifacts.diagnostics:
					print(diagnostic.message, file=err)
		if prompt:
			out.write(prompt)
			out.flush()
	return failures


def build_arg_parser() -> argparse.ArgumentParser:
	ap = argparse.ArgumentParser(prog="expr-ir", description="Translate arithmetic expressions into three-address IR")
	ap.add_argument("--file", type=Path, help="translate every non-blank line of FILE instead of reading stdin")
	ap.add_argument("--emit", choices=["ir", "tokens", "ast"], default="ir", help="what to print for each line")
	ap.add_argument("--integer-literals", action="store_true", help="truncate numeric literals to their 32-bit integer part")
	ap.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
	return ap


def main(argv: Optional[List[str]] = None) -> int:
	args = build_arg_parser().parse_args(argv)
	logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(levelname)s:%(name)s: %(message)s")
	engine = ExpressionCompilerEngine(integer_literals=args.integer_literals)
	if args.file is not None:
		with args.file.open(encoding="utf-8") as handle:
			failures = process_lines(handle, engine, sys.stdout, sys.stderr, emit=args.emit)
		return 1 if failures else 0
	prompt = ">>> " if sys.stdin.isatty() else ""
	process_lines(sys.stdin, engine, sys.stdout, sys.stderr, emit=args.emit, prompt=prompt)
	return 0


if __name__ == "__main__":
	sys.exit(main())
