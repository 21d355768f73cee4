"""
Expression and statement tree nodes.

Nodes are built once by `VimTransformer` from the parser's tagged trees and
are never mutated by execution; every runtime state lives in `Context`,
`Frame` and the values themselves.
"""
from typing import Any, Optional, Sequence, Tuple


class Node:
    """Base class for all tree nodes. `line`/`col` locate the node in its source when known."""
    _fields: Tuple[str, ...] = ()
    line: Optional[int] = None
    col: Optional[int] = None

    def __repr__(self) -> str:
        args = ", ".join(f"{f}={getattr(self, f)!r}" for f in self._fields)
        return f"{type(self).__name__}({args})"

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return all(getattr(self, f) == getattr(other, f) for f in self._fields)

    def __hash__(self):
        return id(self)


class Expression(Node):
    pass


class Statement(Node):
    pass


# =================================================================
# Expressions
# =================================================================

class IntLiteral(Expression):
    _fields = ("value",)

    def __init__(self, value: int):
        self.value = value


class FloatLiteral(Expression):
    _fields = ("value",)

    def __init__(self, value: float):
        self.value = value


class StringLiteral(Expression):
    _fields = ("value",)

    def __init__(self, value: str):
        self.value = value


class ListExpr(Expression):
    _fields = ("items",)

    def __init__(self, items: Sequence[Expression]):
        self.items = tuple(items)


class DictExpr(Expression):
    _fields = ("entries",)

    def __init__(self, entries: Sequence[Tuple[Expression, Expression]]):
        self.entries = tuple(tuple(e) for e in entries)


class Variable(Expression):
    """`scope:name`. `parts` holds plain strings and, for curly-brace names, expressions."""
    _fields = ("scope", "parts")

    def __init__(self, scope: Optional[str], parts: Sequence[Any]):
        self.scope = scope
        self.parts = tuple(parts)

    @property
    def is_simple(self) -> bool:
        return all(isinstance(p, str) for p in self.parts)

    @property
    def text(self) -> str:
        """The name as written, with `{expr}` placeholders."""
        name = "".join(p if isinstance(p, str) else "{...}" for p in self.parts)
        return f"{self.scope}:{name}" if self.scope else name


class OptionExpr(Expression):
    """`&name`, `&g:name`, `&l:name`."""
    _fields = ("scope", "name")

    def __init__(self, scope: Optional[str], name: str):
        self.scope = scope
        self.name = name


class RegisterExpr(Expression):
    _fields = ("name",)

    def __init__(self, name: str):
        self.name = name


class EnvExpr(Expression):
    _fields = ("name",)

    def __init__(self, name: str):
        self.name = name


class ScopeExpr(Expression):
    """A whole scope used as a Dictionary, e.g. `g:` or `l:`."""
    _fields = ("scope",)

    def __init__(self, scope: str):
        self.scope = scope


class BinaryExpr(Expression):
    _fields = ("op", "left", "right")

    def __init__(self, op: str, left: Expression, right: Expression):
        self.op = op
        self.left = left
        self.right = right


class UnaryExpr(Expression):
    _fields = ("op", "operand")

    def __init__(self, op: str, operand: Expression):
        self.op = op
        self.operand = operand


class TernaryExpr(Expression):
    _fields = ("condition", "then", "otherwise")

    def __init__(self, condition: Expression, then: Expression, otherwise: Expression):
        self.condition = condition
        self.then = then
        self.otherwise = otherwise


class FalsyExpr(Expression):
    """`left ?? right`."""
    _fields = ("left", "right")

    def __init__(self, left: Expression, right: Expression):
        self.left = left
        self.right = right


class IndexExpr(Expression):
    _fields = ("target", "index")

    def __init__(self, target: Expression, index: Expression):
        self.target = target
        self.index = index


class SliceExpr(Expression):
    _fields = ("target", "start", "end")

    def __init__(self, target: Expression, start: Optional[Expression], end: Optional[Expression]):
        self.target = target
        self.start = start
        self.end = end


class CallExpr(Expression):
    """A call by name: `Foo(1)`, `s:Bar()`, `len(x)`."""
    _fields = ("scope", "name", "args")

    def __init__(self, scope: Optional[str], name: str, args: Sequence[Expression]):
        self.scope = scope
        self.name = name
        self.args = tuple(args)


class FuncrefCallExpr(Expression):
    """A call of a computed callee: `d.method()`, `list[0]()`, `Fn(1)(2)`."""
    _fields = ("target", "args")

    def __init__(self, target: Expression, args: Sequence[Expression]):
        self.target = target
        self.args = tuple(args)


class LambdaExpr(Expression):
    _fields = ("params", "body")

    def __init__(self, params: Sequence[str], body: Expression):
        self.params = tuple(params)
        self.body = body


class LambdaCallExpr(Expression):
    """`{x -> x * 2}(21)`."""
    _fields = ("lambda_", "args")

    def __init__(self, lambda_: LambdaExpr, args: Sequence[Expression]):
        self.lambda_ = lambda_
        self.args = tuple(args)


# =================================================================
# Statements
# =================================================================

class Let(Statement):
    """`let target op value`; target is an assignable expression or a ListExpr of them for unpacking."""
    _fields = ("target", "op", "value")

    def __init__(self, target: Expression, op: str, value: Expression):
        self.target = target
        self.op = op
        self.value = value


class Unlet(Statement):
    _fields = ("targets", "bang")

    def __init__(self, targets: Sequence[Expression], bang: bool = False):
        self.targets = tuple(targets)
        self.bang = bang


class LockVar(Statement):
    _fields = ("targets", "depth")

    def __init__(self, targets: Sequence[Expression], depth: int = 2):
        self.targets = tuple(targets)
        self.depth = depth


class UnlockVar(Statement):
    _fields = ("targets", "depth")

    def __init__(self, targets: Sequence[Expression], depth: int = 2):
        self.targets = tuple(targets)
        self.depth = depth


class Echo(Statement):
    _fields = ("args",)

    def __init__(self, args: Sequence[Expression]):
        self.args = tuple(args)


class EchoMsg(Echo):
    pass


class EchoErr(Echo):
    pass


class CallStmt(Statement):
    """`:[range]call expr`. `range` is a pair of line expressions or None."""
    _fields = ("expr", "range")

    def __init__(self, expr: Expression, range: Optional[Tuple[Expression, Expression]] = None):
        self.expr = expr
        self.range = tuple(range) if range is not None else None


class Execute(Statement):
    _fields = ("args",)

    def __init__(self, args: Sequence[Expression]):
        self.args = tuple(args)


class If(Statement):
    _fields = ("branches", "else_body")

    def __init__(self, branches: Sequence[Tuple[Expression, Sequence[Statement]]],
                 else_body: Optional[Sequence[Statement]] = None):
        self.branches = tuple((cond, tuple(body)) for cond, body in branches)
        self.else_body = tuple(else_body) if else_body is not None else None


class While(Statement):
    _fields = ("condition", "body")

    def __init__(self, condition: Expression, body: Sequence[Statement]):
        self.condition = condition
        self.body = tuple(body)


class For(Statement):
    _fields = ("variable", "iterable", "body")

    def __init__(self, variable: Variable, iterable: Expression, body: Sequence[Statement]):
        self.variable = variable
        self.iterable = iterable
        self.body = tuple(body)


class ForUnpack(Statement):
    """`for [a, b] in list_of_pairs`."""
    _fields = ("variables", "iterable", "body")

    def __init__(self, variables: Sequence[Variable], iterable: Expression, body: Sequence[Statement]):
        self.variables = tuple(variables)
        self.iterable = iterable
        self.body = tuple(body)


class Catch(Node):
    _fields = ("pattern", "body")

    def __init__(self, pattern: Optional[str], body: Sequence[Statement]):
        self.pattern = pattern
        self.body = tuple(body)


class Try(Statement):
    _fields = ("body", "catches", "finally_body")

    def __init__(self, body: Sequence[Statement], catches: Sequence[Catch] = (),
                 finally_body: Optional[Sequence[Statement]] = None):
        self.body = tuple(body)
        self.catches = tuple(catches)
        self.finally_body = tuple(finally_body) if finally_body is not None else None


class Throw(Statement):
    _fields = ("value",)

    def __init__(self, value: Expression):
        self.value = value


class ReturnStmt(Statement):
    _fields = ("value",)

    def __init__(self, value: Optional[Expression] = None):
        self.value = value


class _SingletonStatement(Statement):
    """Internal helper class for the argument-less statements."""
    def __init__(self, name):
        self._name = name

    def __repr__(self):
        return f"{self._name.capitalize()}Stmt<>"

    def __eq__(self, other):
        return self is other

    def __hash__(self):
        return hash(self._name)


BreakStmt = _SingletonStatement("break")
ContinueStmt = _SingletonStatement("continue")
FinishStmt = _SingletonStatement("finish")


class FunctionDecl(Statement):
    """`function[!] Name(params) flags ... endfunction`."""
    _fields = ("scope", "name", "params", "defaults", "varargs", "flags", "bang", "body")

    def __init__(self, scope: Optional[str], name: str, params: Sequence[str],
                 body: Sequence[Statement], defaults: Sequence[Tuple[str, Expression]] = (),
                 varargs: bool = False, flags: Sequence[str] = (), bang: bool = False):
        self.scope = scope
        self.name = name
        self.params = tuple(params)
        self.defaults = tuple(tuple(d) for d in defaults)
        self.varargs = varargs
        self.flags = frozenset(flags)
        self.bang = bang
        self.body = tuple(body)


class DictFunctionDecl(Statement):
    """`function[!] dict.key(params) ... endfunction`; `target` evaluates to the Dictionary."""
    _fields = ("target", "key", "params", "defaults", "varargs", "flags", "bang", "body")

    def __init__(self, target: Expression, key: str, params: Sequence[str],
                 body: Sequence[Statement], defaults: Sequence[Tuple[str, Expression]] = (),
                 varargs: bool = False, flags: Sequence[str] = (), bang: bool = False):
        self.target = target
        self.key = key
        self.params = tuple(params)
        self.defaults = tuple(tuple(d) for d in defaults)
        self.varargs = varargs
        self.flags = frozenset(flags)
        self.bang = bang
        self.body = tuple(body)


class DelFunction(Statement):
    _fields = ("scope", "name", "bang")

    def __init__(self, scope: Optional[str], name: str, bang: bool = False):
        self.scope = scope
        self.name = name
        self.bang = bang


class ExCommand(Statement):
    """Any other ex command; handed to the host verbatim."""
    _fields = ("name", "argument", "bang")

    def __init__(self, name: str, argument: str = "", bang: bool = False):
        self.name = name
        self.argument = argument
        self.bang = bang


class ScriptBody(Node):
    """A whole parsed script."""
    _fields = ("body",)

    def __init__(self, body: Sequence[Statement]):
        self.body = tuple(body)

    def __iter__(self):
        return iter(self.body)

    def __len__(self) -> int:
        return len(self.body)
