"""
Transforms the parser's tagged trees into expression and statement nodes.

The upstream parser hands over plain nested mappings (each with a `tag` key
and named fields), typically loaded from YAML or JSON. This module is the
only place that knows that shape.
"""
from typing import Any, List, Optional

from viml.viml_datatypes import parse_number
from viml.viml_nodes import (
    Node, Expression, Statement,
    IntLiteral, FloatLiteral, StringLiteral, ListExpr, DictExpr, Variable,
    OptionExpr, RegisterExpr, EnvExpr, ScopeExpr,
    BinaryExpr, UnaryExpr, TernaryExpr, FalsyExpr, IndexExpr, SliceExpr,
    CallExpr, FuncrefCallExpr, LambdaExpr, LambdaCallExpr,
    Let, Unlet, LockVar, UnlockVar, Echo, EchoMsg, EchoErr, CallStmt, Execute,
    If, While, For, ForUnpack, Try, Catch, Throw, ReturnStmt,
    BreakStmt, ContinueStmt, FinishStmt,
    FunctionDecl, DictFunctionDecl, DelFunction, ExCommand, ScriptBody,
)
from viml.viml_operators import BINARY_OPERATORS, UNARY_OPERATORS
from viml.viml_scopes import SCOPES


LET_OPERATORS = ("=", "+=", "-=", "*=", "/=", "%=", ".=", "..=")
FUNCTION_FLAGS = ("abort", "range", "dict", "closure")


class VimTransformer:
    def _attach_loc(self, obj: Node, node: dict) -> Node:
        line = node.get('line')
        col = node.get('col')
        if line is not None:
            obj.line = line
            obj.col = col
        return obj

    def _require(self, node: dict, key: str) -> Any:
        if key not in node:
            raise ValueError(f"'{node.get('tag')}' node is missing '{key}'")
        return node[key]

    def _scope(self, node: dict) -> Optional[str]:
        scope = node.get('scope')
        if scope is None:
            return None
        scope = str(scope).rstrip(':')
        if scope not in SCOPES:
            raise ValueError(f"Unknown scope '{scope}:'")
        return scope

    def _body(self, nodes) -> List[Statement]:
        return [self.statement(n) for n in (nodes or [])]

    def _function_parts(self, node: dict) -> dict:
        flags = list(node.get('flags') or [])
        for flag in flags:
            if flag not in FUNCTION_FLAGS:
                raise ValueError(f"Unknown function flag '{flag}'")
        defaults = [(name, self.expression(expr)) for name, expr in (node.get('defaults') or [])]
        return dict(
            params=list(node.get('params') or []),
            body=self._body(node.get('body')),
            defaults=defaults,
            varargs=bool(node.get('varargs', False)),
            flags=flags,
            bang=bool(node.get('bang', False)),
        )

    def transform(self, tree: Any) -> ScriptBody:
        """Entry point: a list of statements or a `{tag: script, body: [...]}` mapping."""
        if isinstance(tree, dict) and tree.get('tag') == 'script':
            return self._attach_loc(ScriptBody(self._body(tree.get('body'))), tree)
        if isinstance(tree, dict):
            return ScriptBody([self.statement(tree)])
        if isinstance(tree, list):
            return ScriptBody(self._body(tree))
        if tree is None:
            return ScriptBody([])
        raise ValueError(f"Cannot transform a {type(tree).__name__} into a script")

    # --- Expressions ---

    def expression(self, node: Any) -> Expression:
        if not isinstance(node, dict):
            raise ValueError(f"Expected an expression node, got {node!r}")
        tag = node.get('tag')

        match tag:
            # Literals
            case 'int':
                value = self._require(node, 'value')
                if not isinstance(value, int):
                    value = parse_number(str(value).strip())
                    value = value if value is not None else 0
                expr = IntLiteral(value)
            case 'float':
                expr = FloatLiteral(float(self._require(node, 'value')))
            case 'string':
                expr = StringLiteral(str(self._require(node, 'value')))
            case 'list':
                expr = ListExpr([self.expression(n) for n in node.get('items') or []])
            case 'dict':
                entries = []
                for entry in node.get('entries') or []:
                    if len(entry) != 2:
                        raise ValueError("Dictionary entries must be [key, value] pairs")
                    entries.append((self.expression(entry[0]), self.expression(entry[1])))
                expr = DictExpr(entries)

            # Names
            case 'variable':
                name = self._require(node, 'name')
                parts = name if isinstance(name, list) else [name]
                parts = [p if isinstance(p, str) else self.expression(p) for p in parts]
                expr = Variable(self._scope(node), parts)
            case 'option':
                scope = node.get('scope')
                expr = OptionExpr(str(scope).rstrip(':') if scope else None, self._require(node, 'name'))
            case 'register':
                expr = RegisterExpr(str(self._require(node, 'name')))
            case 'env':
                expr = EnvExpr(str(self._require(node, 'name')))
            case 'scope':
                expr = ScopeExpr(self._scope(node))

            # Operators
            case 'binary':
                op = self._require(node, 'op')
                if op not in BINARY_OPERATORS:
                    raise ValueError(f"Unknown binary operator '{op}'")
                expr = BinaryExpr(op, self.expression(node['left']), self.expression(node['right']))
            case 'unary':
                op = self._require(node, 'op')
                if op not in UNARY_OPERATORS:
                    raise ValueError(f"Unknown unary operator '{op}'")
                expr = UnaryExpr(op, self.expression(node['operand']))
            case 'ternary':
                expr = TernaryExpr(
                    self.expression(node['condition']),
                    self.expression(node['then']),
                    self.expression(node['else']),
                )
            case 'falsy':
                expr = FalsyExpr(self.expression(node['left']), self.expression(node['right']))
            case 'index':
                expr = IndexExpr(self.expression(node['target']), self.expression(node['index']))
            case 'slice':
                start = node.get('from')
                end = node.get('to')
                expr = SliceExpr(
                    self.expression(node['target']),
                    self.expression(start) if start is not None else None,
                    self.expression(end) if end is not None else None,
                )

            # Calls
            case 'call':
                expr = CallExpr(self._scope(node), self._require(node, 'name'),
                                [self.expression(a) for a in node.get('args') or []])
            case 'funcref_call':
                expr = FuncrefCallExpr(self.expression(node['target']),
                                       [self.expression(a) for a in node.get('args') or []])
            case 'lambda':
                expr = LambdaExpr(list(node.get('params') or []), self.expression(node['body']))
            case 'lambda_call':
                lam = self.expression(node['lambda'])
                if not isinstance(lam, LambdaExpr):
                    raise ValueError("'lambda_call' requires a 'lambda' node")
                expr = LambdaCallExpr(lam, [self.expression(a) for a in node.get('args') or []])

            case _:
                raise NotImplementedError(f"No transformer for tag '{tag}'")

        return self._attach_loc(expr, node)

    # --- Statements ---

    def statement(self, node: Any) -> Statement:
        if not isinstance(node, dict):
            raise ValueError(f"Expected a statement node, got {node!r}")
        tag = node.get('tag')

        match tag:
            case 'let':
                op = node.get('op', '=')
                if op not in LET_OPERATORS:
                    raise ValueError(f"Unknown assignment operator '{op}'")
                stmt = Let(self.expression(node['target']), op, self.expression(node['value']))
            case 'unlet':
                stmt = Unlet([self.expression(t) for t in node.get('targets') or []], bool(node.get('bang', False)))
            case 'lockvar':
                stmt = LockVar([self.expression(t) for t in node.get('targets') or []], int(node.get('depth', 2)))
            case 'unlockvar':
                stmt = UnlockVar([self.expression(t) for t in node.get('targets') or []], int(node.get('depth', 2)))
            case 'echo':
                stmt = Echo([self.expression(a) for a in node.get('args') or []])
            case 'echomsg':
                stmt = EchoMsg([self.expression(a) for a in node.get('args') or []])
            case 'echoerr':
                stmt = EchoErr([self.expression(a) for a in node.get('args') or []])
            case 'call':
                rng = node.get('range')
                if rng is not None:
                    if len(rng) != 2:
                        raise ValueError("A call range must be a [first, last] pair")
                    rng = (self.expression(rng[0]), self.expression(rng[1]))
                stmt = CallStmt(self.expression(node['expr']), rng)
            case 'execute':
                stmt = Execute([self.expression(a) for a in node.get('args') or []])

            # Control flow
            case 'if':
                branches = [(self.expression(cond), self._body(body)) for cond, body in node.get('branches') or []]
                if not branches:
                    raise ValueError("'if' needs at least one branch")
                else_body = node.get('else')
                stmt = If(branches, self._body(else_body) if else_body is not None else None)
            case 'while':
                stmt = While(self.expression(node['condition']), self._body(node.get('body')))
            case 'for':
                iterable = self.expression(node['iterable'])
                body = self._body(node.get('body'))
                if 'variables' in node:
                    variables = [self.expression(v) for v in node['variables']]
                    stmt = ForUnpack(variables, iterable, body)
                else:
                    stmt = For(self.expression(self._require(node, 'variable')), iterable, body)
            case 'try':
                catches = [Catch(c.get('pattern'), self._body(c.get('body'))) for c in node.get('catches') or []]
                fin = node.get('finally')
                stmt = Try(self._body(node.get('body')), catches, self._body(fin) if fin is not None else None)
            case 'throw':
                stmt = Throw(self.expression(node['value']))
            case 'return':
                value = node.get('value')
                stmt = ReturnStmt(self.expression(value) if value is not None else None)
            case 'break':
                return BreakStmt
            case 'continue':
                return ContinueStmt
            case 'finish':
                return FinishStmt

            # Functions
            case 'function':
                stmt = FunctionDecl(self._scope(node), self._require(node, 'name'), **self._function_parts(node))
            case 'dict_function':
                stmt = DictFunctionDecl(self.expression(node['target']), self._require(node, 'key'),
                                        **self._function_parts(node))
            case 'delfunction':
                stmt = DelFunction(self._scope(node), self._require(node, 'name'), bool(node.get('bang', False)))
            case 'command':
                stmt = ExCommand(self._require(node, 'name'), str(node.get('argument') or ''), bool(node.get('bang', False)))

            case _:
                raise NotImplementedError(f"No transformer for tag '{tag}'")

        return self._attach_loc(stmt, node)
