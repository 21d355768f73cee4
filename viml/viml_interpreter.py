"""
The core VimL interpreter: the Evaluator.

Expressions evaluate to values; statements produce a control signal
(`Success`, `Break`, `Continue`, `Return`, `Error`). Runtime failures are
raised as `VimError` and travel as exceptions until a function boundary,
a `try` or the script's top level decides what to do with them.
"""
import inspect
import os
import sys
from contextlib import aclosing
from typing import Any, Dict, List, Optional, Sequence, Tuple

from viml.viml_builtins import BuiltinFunctions
from viml.viml_datatypes import (
    VimDataType, VimInt, VimFloat, VimString, VimList, VimDictionary, VimFuncref, VimBlob,
)
from viml.viml_errors import (
    VimError, ScriptFinish, vim_error, Signal, Success, Break, Continue, Return, Error,
)
from viml.viml_functions import FunctionHandler, FunctionRegistry
from viml.viml_nodes import (
    Node, Expression, Statement,
    IntLiteral, FloatLiteral, StringLiteral, ListExpr, DictExpr, Variable,
    OptionExpr, RegisterExpr, EnvExpr, ScopeExpr,
    BinaryExpr, UnaryExpr, TernaryExpr, FalsyExpr, IndexExpr, SliceExpr,
    CallExpr, FuncrefCallExpr, LambdaExpr, LambdaCallExpr,
    Let, Unlet, LockVar, UnlockVar, Echo, EchoErr, CallStmt, Execute,
    If, While, For, ForUnpack, Try, Throw, ReturnStmt,
    BreakStmt, ContinueStmt, FinishStmt,
    FunctionDecl, DictFunctionDecl, DelFunction, ExCommand, ScriptBody,
)
from viml.viml_operators import arithmetic, binary, unary, is_falsy, index_value, slice_value
from viml.viml_patterns import default_matcher
from viml.viml_printer import Printer
from viml.viml_scopes import Context, VariableStore, split_scope, display_name
from viml.viml_serialize import to_vim, to_python
from viml.viml_transformer import VimTransformer


# Vim's default 'maxfuncdepth'.
DEFAULT_MAX_FUNC_DEPTH = 100

_REGISTER_NAMES = set('"0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ-*+.:%#/=_')


class Evaluator:
    """The VimL execution engine."""
    def __init__(self, *, max_func_depth: Optional[int] = None, parser=None, matcher=None):
        self.variables = VariableStore()
        self.builtins = BuiltinFunctions(self)
        self.functions = FunctionRegistry(self.builtins.handlers())
        self.printer = Printer()
        self.transformer = VimTransformer()
        # Callable turning source text into a parser tree; used by :execute and string callbacks.
        self.parser = parser
        self.matcher = matcher or default_matcher
        if max_func_depth is None:
            max_func_depth = int(os.environ.get("VIML_MAX_FUNC_DEPTH", DEFAULT_MAX_FUNC_DEPTH))
        self.max_func_depth = max_func_depth
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node: Optional[Node] = None
        self.errors: List[VimError] = []
        self.messages: List[str] = []

    # --- Frames and diagnostics ---

    def _push_frame(self, name: str, handler: FunctionHandler, args: Sequence[VimDataType]):
        if len(self.call_stack) >= self.max_func_depth:
            raise vim_error("E132")
        self.call_stack.append({
            'name': name,
            'handler': handler,
            'args': list(args),
            'call_site': self.current_node,
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def _dbg(self, *parts):
        if os.environ.get("VIML_DEBUG"):
            try:
                print("[DBG]", *parts, file=sys.stderr)
            except Exception:
                pass

    def report_error(self, error: VimError, ctx: Context):
        """Records an error that does not stop execution and shows it through the host."""
        self._dbg("report_error", str(error))
        if error.node is None:
            error.node = self.current_node
        self.errors.append(error)
        self.variables.set_vim_variable("errmsg", VimString(str(error)))
        if ctx.host is not None:
            ctx.host.show_message(str(error))
            ctx.host.indicate_error()

    def show_message(self, text: str, ctx: Context):
        self.messages.append(text)
        if ctx.host is not None:
            ctx.host.show_message(text)

    def throwpoint(self, ctx: Context) -> str:
        where = self.call_stack[-1]['name'] if self.call_stack else ctx.script.name
        line = getattr(self.current_node, 'line', None)
        return f"{where}, line {line}" if line is not None else where

    # --- Parsing hooks ---

    def parse(self, text: str) -> ScriptBody:
        if self.parser is None:
            raise vim_error("E492", text)
        return self.transformer.transform(self.parser(text))

    def parse_expression(self, text: str) -> Expression:
        if self.parser is None:
            raise vim_error("E492", text)
        return self.transformer.expression(self.parser(text, "expression"))

    # =================================================================
    # Expressions
    # =================================================================

    async def evaluate(self, node: Expression, ctx: Context) -> VimDataType:
        """Public entry point for expression evaluation."""
        self.current_node = node
        return await self._eval(node, ctx)

    async def _eval(self, node: Expression, ctx: Context) -> VimDataType:
        match node:
            case IntLiteral():
                return VimInt(node.value)
            case FloatLiteral():
                return VimFloat(node.value)
            case StringLiteral():
                return VimString(node.value)
            case ListExpr():
                return VimList([await self._eval(item, ctx) for item in node.items])
            case DictExpr():
                return await self._eval_dict(node, ctx)
            case Variable():
                name = await self._variable_name(node, ctx)
                return self.variables.get_or_fail(node.scope, name, ctx)
            case OptionExpr():
                value = ctx.host.get_option(node.name, node.scope)
                if value is None:
                    raise vim_error("E518", node.name)
                return to_vim(value)
            case RegisterExpr():
                if node.name not in _REGISTER_NAMES:
                    raise vim_error("E354", node.name)
                return VimString(ctx.host.get_register(node.name) or "")
            case EnvExpr():
                return VimString(ctx.host.get_env(node.name) or "")
            case ScopeExpr():
                return self.variables.namespace(node.scope, ctx)
            case BinaryExpr():
                return await self._eval_binary(node, ctx)
            case UnaryExpr():
                return unary(node.op, await self._eval(node.operand, ctx))
            case TernaryExpr():
                if (await self._eval(node.condition, ctx)).as_boolean():
                    return await self._eval(node.then, ctx)
                return await self._eval(node.otherwise, ctx)
            case FalsyExpr():
                left = await self._eval(node.left, ctx)
                return await self._eval(node.right, ctx) if is_falsy(left) else left
            case IndexExpr():
                target = await self._eval(node.target, ctx)
                return index_value(target, await self._eval(node.index, ctx))
            case SliceExpr():
                target = await self._eval(node.target, ctx)
                start = await self._eval(node.start, ctx) if node.start is not None else None
                end = await self._eval(node.end, ctx) if node.end is not None else None
                return slice_value(target, start, end)
            case CallExpr() | FuncrefCallExpr() | LambdaCallExpr():
                return await self._eval_call(node, ctx)
            case LambdaExpr():
                return self.functions.make_lambda(node.params, node.body, ctx)
        raise NotImplementedError(f"No evaluator for {type(node).__name__}")

    async def _eval_dict(self, node: DictExpr, ctx: Context) -> VimDictionary:
        out = VimDictionary()
        for key_expr, value_expr in node.entries:
            key = (await self._eval(key_expr, ctx)).as_string()
            if key in out:
                raise vim_error("E721", key)
            out[key] = await self._eval(value_expr, ctx)
        return out

    async def _eval_binary(self, node: BinaryExpr, ctx: Context) -> VimDataType:
        left = await self._eval(node.left, ctx)
        if node.op == "&&":
            if not left.as_boolean():
                return VimInt(0)
            return VimInt(1 if (await self._eval(node.right, ctx)).as_boolean() else 0)
        if node.op == "||":
            if left.as_boolean():
                return VimInt(1)
            return VimInt(1 if (await self._eval(node.right, ctx)).as_boolean() else 0)
        right = await self._eval(node.right, ctx)
        return binary(node.op, left, right, self.matcher)

    async def _variable_name(self, node: Variable, ctx: Context) -> str:
        """The name with every `{expr}` part evaluated."""
        if node.is_simple:
            return "".join(node.parts)
        parts = []
        for part in node.parts:
            if isinstance(part, str):
                parts.append(part)
            else:
                parts.append((await self._eval(part, ctx)).as_string())
        return "".join(parts)

    async def _eval_args(self, args: Sequence[Expression], ctx: Context) -> List[VimDataType]:
        return [await self._eval(a, ctx) for a in args]

    async def _eval_call(self, node, ctx: Context, line_range: Optional[Tuple[int, int]] = None) -> VimDataType:
        match node:
            case CallExpr():
                args = await self._eval_args(node.args, ctx)
                return await self._call_by_name(node.scope, node.name, args, ctx, line_range=line_range)
            case FuncrefCallExpr():
                target = await self._eval(node.target, ctx)
                if not isinstance(target, VimFuncref):
                    raise vim_error("E718")
                args = await self._eval_args(node.args, ctx)
                return await target.execute(args, ctx, self, line_range=line_range)
            case LambdaCallExpr():
                ref = self.functions.make_lambda(node.lambda_.params, node.lambda_.body, ctx)
                args = await self._eval_args(node.args, ctx)
                return await ref.execute(args, ctx, self, line_range=line_range)
        raise vim_error("E129")

    # =================================================================
    # Function calls
    # =================================================================

    async def call_function(self, function, args: Sequence[VimDataType], ctx: Context, *,
                            self_dict: Optional[VimDictionary] = None,
                            line_range: Optional[Tuple[int, int]] = None) -> VimDataType:
        """Calls a function given by name (`'Foo'`, `'s:Bar'`) or by Funcref value."""
        if isinstance(function, VimFuncref):
            if self_dict is not None:
                function = function.copy()
                function.dictionary = self_dict
            return await function.execute(list(args), ctx, self, line_range=line_range)
        scope, name = split_scope(str(function))
        return await self._call_by_name(scope, name, list(args), ctx, self_dict=self_dict, line_range=line_range)

    async def _call_by_name(self, scope: Optional[str], name: str, args: List[VimDataType], ctx: Context,
                            self_dict: Optional[VimDictionary] = None,
                            line_range: Optional[Tuple[int, int]] = None) -> VimDataType:
        handler = self.functions.get_handler_or_none(scope, name, ctx)
        if handler is not None:
            self._dbg("call", handler.display_name, "argc", len(args))
            return await handler.execute(args, ctx, self, self_dict=self_dict, line_range=line_range)
        # A variable holding a Funcref is callable by its name.
        value = self.variables.get(scope, name, ctx)
        if isinstance(value, VimFuncref):
            return await self.call_function(value, args, ctx, self_dict=self_dict, line_range=line_range)
        raise vim_error("E117", display_name(scope, name))

    def declare_function(self, node: FunctionDecl, ctx: Context):
        return self.functions.declare(node, ctx)

    # =================================================================
    # Statements
    # =================================================================

    async def execute(self, statements: Sequence[Statement], ctx: Context) -> Signal:
        """Runs statements in order, stopping at the first non-Success signal."""
        for stmt in statements:
            signal = await self.execute_statement(stmt, ctx)
            if signal is not Success:
                return signal
        return Success

    async def run_script(self, body: Sequence[Statement], ctx: Context) -> Signal:
        """Top-level execution: errors are reported and the next statement still runs."""
        for stmt in body:
            try:
                signal = await self.execute_statement(stmt, ctx)
            except ScriptFinish:
                break
            except VimError as e:
                self.report_error(e, ctx)
                continue
            if signal is Break:
                self.report_error(vim_error("E587"), ctx)
            elif signal is Continue:
                self.report_error(vim_error("E586"), ctx)
            elif isinstance(signal, Error):
                self.report_error(signal.error, ctx)
        return Success

    async def execute_statement(self, stmt: Statement, ctx: Context) -> Signal:
        self.current_node = stmt
        if stmt is BreakStmt:
            return Break
        if stmt is ContinueStmt:
            return Continue
        if stmt is FinishStmt:
            raise ScriptFinish()

        match stmt:
            case Let():
                value = await self._eval(stmt.value, ctx)
                if isinstance(stmt.target, ListExpr):
                    await self._unpack(stmt.target.items, stmt.op, value, ctx)
                else:
                    await self._assign(stmt.target, stmt.op, value, ctx)
            case Unlet():
                for target in stmt.targets:
                    await self._unlet(target, stmt.bang, ctx)
            case LockVar() | UnlockVar():
                for target in stmt.targets:
                    await self._lock(target, stmt.depth, isinstance(stmt, LockVar), ctx)
            case EchoErr():
                raise VimError(await self._echo_text(stmt.args, ctx))
            case Echo():
                self.show_message(await self._echo_text(stmt.args, ctx), ctx)
            case CallStmt():
                line_range = None
                if stmt.range is not None:
                    first = (await self._eval(stmt.range[0], ctx)).to_vim_number().value
                    last = (await self._eval(stmt.range[1], ctx)).to_vim_number().value
                    line_range = (first, last)
                await self._eval_call(stmt.expr, ctx, line_range)
            case Execute():
                values = await self._eval_args(stmt.args, ctx)
                text = " ".join(v.as_string() for v in values)
                self._dbg("execute", text)
                return await self.execute(self.parse(text).body, ctx)
            case If():
                for condition, body in stmt.branches:
                    if (await self._eval(condition, ctx)).as_boolean():
                        return await self.execute(body, ctx)
                if stmt.else_body is not None:
                    return await self.execute(stmt.else_body, ctx)
            case While():
                return await self._while(stmt, ctx)
            case For() | ForUnpack():
                return await self._for(stmt, ctx)
            case Try():
                return await self._try(stmt, ctx)
            case Throw():
                text = (await self._eval(stmt.value, ctx)).as_string()
                if text.startswith("Vim"):
                    raise vim_error("E608")
                raise VimError(text)
            case ReturnStmt():
                if not ctx.in_function:
                    raise vim_error("E133")
                value = await self._eval(stmt.value, ctx) if stmt.value is not None else VimInt(0)
                return Return(value)
            case FunctionDecl():
                self.declare_function(stmt, ctx)
            case DictFunctionDecl():
                dictionary = await self._eval(stmt.target, ctx)
                self.functions.declare_dict_function(stmt, dictionary, ctx)
            case DelFunction():
                self.functions.delete(stmt.scope, stmt.name, ctx, stmt.bang)
            case ExCommand():
                result = ctx.host.execute_command(stmt.name, stmt.argument, stmt.bang)
                if inspect.isawaitable(result):
                    result = await result
                if result is False:
                    return Error(vim_error("E492", stmt.name))
            case _:
                raise NotImplementedError(f"No executor for {type(stmt).__name__}")
        return Success

    async def _echo_text(self, args: Sequence[Expression], ctx: Context) -> str:
        values = await self._eval_args(args, ctx)
        return " ".join(self.printer.pformat(v) for v in values)

    # --- Loops ---

    async def _while(self, node: While, ctx: Context) -> Signal:
        while (await self._eval(node.condition, ctx)).as_boolean():
            signal = await self.execute(node.body, ctx)
            if signal is Break:
                break
            if signal is Success or signal is Continue:
                continue
            return signal
        return Success

    async def _loop_items(self, node, ctx: Context):
        """Items of a `for` loop. A List is re-read after every iteration."""
        iterable = await self._eval(node.iterable, ctx)
        if isinstance(iterable, VimString):
            for c in iterable.value:
                yield VimString(c)
            return
        if isinstance(iterable, VimBlob):
            raise NotImplementedError("for over a Blob")
        if not isinstance(iterable, VimList):
            raise vim_error("E1098")
        index = 0
        while index < len(iterable):
            yield iterable.values[index]
            index += 1
            iterable = await self._eval(node.iterable, ctx)
            if not isinstance(iterable, VimList):
                raise vim_error("E714")

    async def _for(self, node, ctx: Context) -> Signal:
        async with aclosing(self._loop_items(node, ctx)) as items:
            async for item in items:
                if isinstance(node, ForUnpack):
                    await self._unpack(node.variables, "=", item, ctx)
                else:
                    await self._assign(node.variable, "=", item, ctx)
                signal = await self.execute(node.body, ctx)
                if signal is Break:
                    break
                if signal is Success or signal is Continue:
                    continue
                return signal
        return Success

    # --- try / catch / finally ---

    def _find_catch(self, catches, error: VimError):
        message = str(error)
        for clause in catches:
            pattern = clause.pattern
            if not pattern:
                return clause
            if len(pattern) > 1 and pattern[0] == pattern[-1] == "/":
                pattern = pattern[1:-1]
            if self.matcher(pattern, message):
                self._dbg("catch matched", repr(clause.pattern), message)
                return clause
        return None

    async def _try(self, node: Try, ctx: Context) -> Signal:
        pending: Optional[VimError] = None
        signal = Success
        try:
            signal = await self.execute(node.body, ctx)
            if isinstance(signal, Error):
                raise signal.error
        except ScriptFinish as e:
            pending = e
            signal = Success
        except VimError as e:
            signal = Success
            clause = self._find_catch(node.catches, e)
            if clause is None:
                pending = e
            else:
                self.variables.set_vim_variable("exception", VimString(str(e)))
                self.variables.set_vim_variable("throwpoint", VimString(e.throwpoint or self.throwpoint(ctx)))
                try:
                    signal = await self.execute(clause.body, ctx)
                except VimError as inner:
                    pending = inner
                finally:
                    self.variables.set_vim_variable("exception", VimString(""))
        if node.finally_body is not None:
            final = await self.execute(node.finally_body, ctx)
            if final is not Success:
                return final
        if pending is not None:
            raise pending
        return signal

    # --- Assignment ---

    def _compound(self, op: str, current: VimDataType, value: VimDataType, what: str) -> VimDataType:
        if op == "+=" and isinstance(current, VimList) and isinstance(value, VimList):
            if current.is_locked:
                raise vim_error("E741", what)
            current.values.extend(value.values)
            return current
        return arithmetic(op[:-1], current, value)

    async def _unpack(self, targets: Sequence[Expression], op: str, value: VimDataType, ctx: Context):
        if not isinstance(value, VimList):
            raise vim_error("E714")
        if len(targets) > len(value):
            raise vim_error("E688")
        if len(targets) < len(value):
            raise VimError("Less targets than List items", "E684")
        for target, item in zip(targets, list(value.values)):
            await self._assign(target, op, item, ctx)

    async def _assign(self, target: Expression, op: str, value: VimDataType, ctx: Context):
        match target:
            case Variable():
                name = await self._variable_name(target, ctx)
                if op != "=":
                    current = self.variables.get_or_fail(target.scope, name, ctx)
                    value = self._compound(op, current, value, display_name(target.scope, name))
                self.variables.set(target.scope, name, value, ctx)
            case IndexExpr():
                container = await self._eval(target.target, ctx)
                key = await self._eval(target.index, ctx)
                self._assign_item(container, key, op, value)
            case SliceExpr():
                await self._assign_slice(target, op, value, ctx)
            case OptionExpr():
                current = ctx.host.get_option(target.name, target.scope)
                if current is None:
                    raise vim_error("E518", target.name)
                if op != "=":
                    value = self._compound(op, to_vim(current), value, target.name)
                ctx.host.set_option(target.name, to_python(value), target.scope)
            case RegisterExpr():
                if target.name not in _REGISTER_NAMES:
                    raise vim_error("E354", target.name)
                if op != "=":
                    value = self._compound(op, VimString(ctx.host.get_register(target.name) or ""), value, target.name)
                ctx.host.set_register(target.name, value.as_string())
            case EnvExpr():
                if op != "=":
                    value = self._compound(op, VimString(ctx.host.get_env(target.name) or ""), value, target.name)
                ctx.host.set_env(target.name, value.as_string())
            case _:
                raise ValueError(f"Cannot assign to {type(target).__name__}")

    def _assign_item(self, container: VimDataType, key: VimDataType, op: str, value: VimDataType):
        match container:
            case VimDictionary():
                k = key.as_string()
                current = container.get(k)
                if op != "=":
                    if current is None:
                        raise vim_error("E716", k)
                    value = self._compound(op, current, value, k)
                if current is not None and current.is_locked:
                    raise vim_error("E741", k)
                if current is None and container.is_locked:
                    raise vim_error("E741", k)
                if isinstance(value, VimFuncref) and value.handler.is_dict and not value.is_self_fixed:
                    value = value.copy()
                    value.dictionary = container
                container[k] = value
            case VimList():
                i = key.to_vim_number().value
                idx = i + len(container) if i < 0 else i
                if idx < 0 or idx >= len(container):
                    raise vim_error("E684", i)
                current = container.values[idx]
                if op != "=":
                    value = self._compound(op, current, value, f"[{i}]")
                if current.is_locked:
                    raise vim_error("E741", f"[{i}]")
                container.values[idx] = value
            case VimBlob():
                i = key.to_vim_number().value
                idx = i + len(container) if i < 0 else i
                if idx < 0 or idx >= len(container):
                    raise vim_error("E979", i)
                if op != "=":
                    value = self._compound(op, VimInt(container.data[idx]), value, f"[{i}]")
                container.data[idx] = value.to_vim_number().value & 0xFF
            case _:
                raise vim_error("E689")

    async def _assign_slice(self, target: SliceExpr, op: str, value: VimDataType, ctx: Context):
        container = await self._eval(target.target, ctx)
        if not isinstance(container, VimList):
            raise vim_error("E689")
        if not isinstance(value, VimList):
            raise vim_error("E709")
        length = len(container)
        first = (await self._eval(target.start, ctx)).to_vim_number().value if target.start is not None else 0
        if first < 0:
            first += length
        if first < 0 or first > length:
            raise vim_error("E684", first)
        items = list(value.values)
        if target.end is None:
            last = first + len(items) - 1
        else:
            last = (await self._eval(target.end, ctx)).to_vim_number().value
            if last < 0:
                last += length
            if last >= length:
                raise vim_error("E684", last)
            count = last - first + 1
            if len(items) < count:
                raise vim_error("E711")
            if len(items) > count:
                raise vim_error("E710")
        for offset, item in enumerate(items):
            idx = first + offset
            if idx < length:
                current = container.values[idx]
                if current.is_locked:
                    raise vim_error("E741", f"[{idx}]")
                container.values[idx] = self._compound(op, current, item, f"[{idx}]") if op != "=" else item
            else:
                if container.is_locked:
                    raise vim_error("E741", f"[{idx}]")
                container.values.append(item)

    # --- unlet / lockvar ---

    async def _unlet(self, target: Expression, bang: bool, ctx: Context):
        match target:
            case Variable():
                name = await self._variable_name(target, ctx)
                self.variables.unlet(target.scope, name, ctx, bang)
            case IndexExpr():
                container = await self._eval(target.target, ctx)
                key = await self._eval(target.index, ctx)
                if isinstance(container, VimDictionary):
                    k = key.as_string()
                    if k not in container:
                        if bang:
                            return
                        raise vim_error("E716", k)
                    if container.is_locked or container[k].is_locked:
                        raise vim_error("E741", k)
                    del container.dictionary[k]
                elif isinstance(container, VimList):
                    i = key.to_vim_number().value
                    idx = i + len(container) if i < 0 else i
                    if idx < 0 or idx >= len(container):
                        raise vim_error("E684", i)
                    if container.is_locked:
                        raise vim_error("E741", f"[{i}]")
                    del container.values[idx]
                else:
                    raise vim_error("E689")
            case SliceExpr():
                container = await self._eval(target.target, ctx)
                if not isinstance(container, VimList):
                    raise vim_error("E689")
                if container.is_locked:
                    raise vim_error("E741", "[:]")
                length = len(container)
                first = (await self._eval(target.start, ctx)).to_vim_number().value if target.start is not None else 0
                last = (await self._eval(target.end, ctx)).to_vim_number().value if target.end is not None else length - 1
                first = first + length if first < 0 else first
                last = last + length if last < 0 else last
                del container.values[first:last + 1]
            case _:
                raise ValueError(f"Cannot unlet {type(target).__name__}")

    async def _lock(self, target: Expression, depth: int, locking: bool, ctx: Context):
        if isinstance(target, Variable):
            name = await self._variable_name(target, ctx)
            if locking:
                self.variables.lock(target.scope, name, depth, ctx)
            else:
                self.variables.unlock(target.scope, name, depth, ctx)
            return
        value = await self._eval(target, ctx)
        if locking:
            value.lock_var(depth)
        else:
            value.unlock_var(depth)
