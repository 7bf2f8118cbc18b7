"""Parser tests."""

import pytest

from expr_compiler import (
	BinaryExpr,
	Lexer,
	NumberLiteral,
	ParseError,
	Parser,
	MAX_NESTING_DEPTH,
	Span,
	VariableRef,
	parse_line,
)


def shape(node):
	"""Strip spans so trees can be compared structurally."""
	if isinstance(node, BinaryExpr):
		return (shape(node.left), node.operator, shape(node.right))
	if isinstance(node, NumberLiteral):
		return node.value
	return node.name


def test_single_number():
	ast = parse_line("42")
	assert ast == NumberLiteral(span=Span(0, 2), value=42.0)


def test_single_identifier():
	ast = parse_line("  alpha")
	assert ast == VariableRef(span=Span(2, 7), name="alpha")


def test_multiplication_binds_tighter():
	assert shape(parse_line("a + b * c")) == ("a", "+", ("b", "*", "c"))
	assert shape(parse_line("a * b - c / d")) == (("a", "*", "b"), "-", ("c", "/", "d"))


@pytest.mark.parametrize(
	"source, expected",
	[
		("a - b - c", (("a", "-", "b"), "-", "c")),
		("a / b / c", (("a", "/", "b"), "/", "c")),
		("a + b - c + d", ((("a", "+", "b"), "-", "c"), "+", "d")),
	],
)
def test_left_associativity(source, expected):
	assert shape(parse_line(source)) == expected


def test_parentheses_override_precedence():
	assert shape(parse_line("(1 + 2) / 3 * 5")) == (((1.0, "+", 2.0), "/", 3.0), "*", 5.0)
	assert shape(parse_line("a - (b - c)")) == ("a", "-", ("b", "-", "c"))
	assert shape(parse_line("((x))")) == "x"


def test_parenthesised_span_covers_parentheses():
	ast = parse_line("(a + b) * c")
	assert ast.left.span == Span(0, 7)
	assert ast.span == Span(0, 11)


def test_fractional_literal_keeps_fraction():
	assert parse_line("2.75").value == 2.75
	assert parse_line("3.").value == 3.0


def test_integer_literals_mode_truncates():
	parser = Parser(Lexer("2.75 + 1"), integer_literals=True)
	ast = parser.parse_add_sub()
	assert ast.left.value == 2.0
	assert ast.right.value == 1.0


def test_integer_literals_mode_rejects_out_of_range():
	with pytest.raises(ParseError, match="32-bit"):
		parse_line("3000000000", integer_literals=True)
	assert parse_line("2147483647", integer_literals=True).value == 2147483647.0


@pytest.mark.parametrize(
	"source, fragment, position",
	[
		("1 + (2 * 3", "expected ')'", 10),
		("", "unexpected end of input", 0),
		("+ 1", "unexpected '+'", 0),
		("1 +", "unexpected end of input", 3),
		("()", "unexpected ')'", 1),
		("1 2", "after end of expression", 2),
		("a b", "identifier 'b'", 2),
		("1 + 2)", "unmatched ')'", 5),
		("* 2", "expected a number, identifier or '('", 0),
	],
)
def test_malformed_input_raises_parse_error(source, fragment, position):
	with pytest.raises(ParseError) as info:
		parse_line(source)
	assert fragment in str(info.value)
	assert str(info.value).startswith("parse error: ")
	assert info.value.position == position


def test_missing_paren_has_hint():
	with pytest.raises(ParseError) as info:
		parse_line("(a + b")
	assert info.value.hint is not None
	assert "')'" in info.value.hint


def test_ast_is_immutable():
	ast = parse_line("a + 1")
	with pytest.raises(AttributeError):
		ast.operator = "-"


def test_huge_literal_is_rejected():
	with pytest.raises(ParseError) as info:
		parse_line("1 + " + "9" * 400)
	assert str(info.value) == f"parse error: numeric literal '{'9' * 400}' is out of range"
	assert info.value.position == 4


def test_long_flat_chain_parses():
	ast = parse_line(" - ".join(["x"] * 1500))
	depth = 0
	while isinstance(ast, BinaryExpr):
		assert isinstance(ast.right, VariableRef)
		ast = ast.left
		depth += 1
	assert depth == 1499


def test_nesting_limit():
	inner = "(" * MAX_NESTING_DEPTH + "y" + ")" * MAX_NESTING_DEPTH
	assert parse_line(inner) == VariableRef(span=Span(0, 2 * MAX_NESTING_DEPTH + 1), name="y")
	with pytest.raises(ParseError, match="nested too deeply") as info:
		parse_line("(" + inner + ")")
	assert info.value.position == MAX_NESTING_DEPTH
