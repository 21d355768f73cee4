import pytest

from viml.viml_transformer import VimTransformer
from viml.viml_nodes import (
    IntLiteral, StringLiteral, ListExpr, Variable, BinaryExpr, CallExpr, SliceExpr,
    Let, If, For, ForUnpack, Try, CallStmt, FunctionDecl, ExCommand, ScriptBody,
    BreakStmt, FinishStmt,
)
from vim_trees import i, s, lst, var, op, sl, call, let, if_, for_, try_, function, BREAK, FINISH

# --- Fixtures ---

@pytest.fixture(scope="module")
def transformer():
    """Returns a VimTransformer instance."""
    return VimTransformer()


# --- Expressions ---

def test_int_literal_from_text(transformer):
    assert transformer.expression({'tag': 'int', 'value': '0x10'}) == IntLiteral(16)
    assert transformer.expression(i(7)) == IntLiteral(7)


def test_scoped_variable(transformer):
    node = transformer.expression(var('g:name'))
    assert isinstance(node, Variable)
    assert node.scope == 'g'
    assert node.is_simple
    assert "".join(node.parts) == 'name'


def test_scope_with_colon_is_accepted(transformer):
    node = transformer.expression({'tag': 'variable', 'scope': 's:', 'name': 'x'})
    assert node.scope == 's'


def test_curly_brace_name(transformer):
    node = transformer.expression({'tag': 'variable', 'name': ['v_', var('n')]})
    assert not node.is_simple
    assert node.parts[0] == 'v_'
    assert isinstance(node.parts[1], Variable)


def test_binary_expression(transformer):
    node = transformer.expression(op('+', i(1), s('2')))
    assert node == BinaryExpr('+', IntLiteral(1), StringLiteral('2'))


def test_call_and_slice(transformer):
    node = transformer.expression(call('s:Helper', i(1)))
    assert isinstance(node, CallExpr)
    assert (node.scope, node.name) == ('s', 'Helper')
    node = transformer.expression(sl(var('l'), None, i(2)))
    assert isinstance(node, SliceExpr)
    assert node.start is None
    assert node.end == IntLiteral(2)


def test_location_is_attached(transformer):
    node = transformer.expression({'tag': 'int', 'value': 1, 'line': 3, 'col': 5})
    assert (node.line, node.col) == (3, 5)


@pytest.mark.parametrize("tree", [
    {'tag': 'binary', 'op': '<=>', 'left': i(1), 'right': i(2)},
    {'tag': 'unary', 'op': '~', 'operand': i(1)},
    {'tag': 'variable', 'scope': 'x', 'name': 'y'},
    {'tag': 'string'},
    {'tag': 'lambda_call', 'lambda': i(1), 'args': []},
    "not a node",
])
def test_malformed_expressions(transformer, tree):
    with pytest.raises(ValueError):
        transformer.expression(tree)


def test_unknown_expression_tag(transformer):
    with pytest.raises(NotImplementedError, match="No transformer for tag 'nope'"):
        transformer.expression({'tag': 'nope'})


# --- Statements ---

def test_let_defaults_to_plain_assignment(transformer):
    node = transformer.statement({'tag': 'let', 'target': var('x'), 'value': i(1)})
    assert isinstance(node, Let)
    assert node.op == '='
    with pytest.raises(ValueError):
        transformer.statement(let('x', i(1), '**='))


def test_unpacking_let_target(transformer):
    node = transformer.statement({'tag': 'let', 'target': lst(var('a'), var('b')), 'value': i(1)})
    assert isinstance(node.target, ListExpr)


def test_if_and_for(transformer):
    node = transformer.statement(if_(i(1), [BREAK], [FINISH]))
    assert isinstance(node, If)
    assert node.branches[0][1] == (BreakStmt,)
    assert node.else_body == (FinishStmt,)
    node = transformer.statement(for_('x', lst(), []))
    assert isinstance(node, For)
    node = transformer.statement({'tag': 'for', 'variables': [var('k'), var('v')], 'iterable': lst(), 'body': []})
    assert isinstance(node, ForUnpack)
    with pytest.raises(ValueError):
        transformer.statement({'tag': 'if', 'branches': []})


def test_try_clauses(transformer):
    node = transformer.statement(try_([BREAK], [('/E1/', []), (None, [])], [FINISH]))
    assert isinstance(node, Try)
    assert [c.pattern for c in node.catches] == ['/E1/', None]
    assert node.finally_body == (FinishStmt,)


def test_call_statement_range(transformer):
    node = transformer.statement({'tag': 'call', 'expr': call('F'), 'range': [i(1), i(3)]})
    assert isinstance(node, CallStmt)
    assert node.range == (IntLiteral(1), IntLiteral(3))
    with pytest.raises(ValueError):
        transformer.statement({'tag': 'call', 'expr': call('F'), 'range': [i(1)]})


def test_function_declaration(transformer):
    node = transformer.statement(function('s:Helper', ['a'], [], flags=['abort', 'range'],
                                          varargs=True, defaults=[('b', i(2))]))
    assert isinstance(node, FunctionDecl)
    assert (node.scope, node.name) == ('s', 'Helper')
    assert node.flags == frozenset({'abort', 'range'})
    assert node.varargs
    assert node.defaults[0][0] == 'b'
    with pytest.raises(ValueError):
        transformer.statement(function('F', [], [], flags=['fast']))


def test_ex_command(transformer):
    node = transformer.statement({'tag': 'command', 'name': 'normal', 'argument': 'dd', 'bang': True})
    assert node == ExCommand('normal', 'dd', True)


def test_transform_entry_points(transformer):
    assert transformer.transform(None).body == ()
    assert len(transformer.transform([BREAK, FINISH]).body) == 2
    body = transformer.transform({'tag': 'script', 'body': [BREAK], 'line': 1})
    assert isinstance(body, ScriptBody)
    assert body.line == 1
    assert len(transformer.transform(BREAK).body) == 1
    with pytest.raises(ValueError):
        transformer.transform(42)
