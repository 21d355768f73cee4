"""
Function registry and invocation.

A `FunctionHandler` is anything callable from a script: a built-in
(`BuiltinFunctionHandler`) or a user function (`DefinedFunctionHandler`,
backed by a `FunctionDeclaration`). Arity is checked once, before any
argument is bound: too few arguments is E119, too many is E118.
"""
import inspect
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from viml.viml_datatypes import VimDataType, VimInt, VimList, VimDictionary, VimFuncref, FuncrefType
from viml.viml_errors import (
    VimError, ScriptFinish, vim_error, Success, Break, Continue, Return, Error,
)
from viml.viml_nodes import Expression, Statement, Let, ReturnStmt, Variable
from viml.viml_scopes import Context, Frame, Script

if TYPE_CHECKING:
    from viml.viml_interpreter import Evaluator


class FunctionHandler(ABC):
    name: str = ""
    scope: Optional[str] = None
    minimum_number_of_arguments: int = 0
    # None means any number
    maximum_number_of_arguments: Optional[int] = None

    @property
    def display_name(self) -> str:
        return f"{self.scope}:{self.name}" if self.scope else self.name

    @property
    def is_deleted(self) -> bool:
        return False

    @property
    def is_dict(self) -> bool:
        return False

    def check_arity(self, args: Sequence[VimDataType]):
        if len(args) < self.minimum_number_of_arguments:
            raise vim_error("E119", self.display_name)
        if self.maximum_number_of_arguments is not None and len(args) > self.maximum_number_of_arguments:
            raise vim_error("E118", self.display_name)

    async def execute(self, args: Sequence[VimDataType], ctx: Context, evaluator: 'Evaluator',
                      self_dict: Optional[VimDictionary] = None,
                      line_range: Optional[Tuple[int, int]] = None) -> VimDataType:
        self.check_arity(args)
        return await self.do_function(list(args), ctx, evaluator, self_dict, line_range)

    @abstractmethod
    async def do_function(self, args: List[VimDataType], ctx: Context, evaluator: 'Evaluator',
                          self_dict: Optional[VimDictionary],
                          line_range: Optional[Tuple[int, int]]) -> VimDataType:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.display_name}>"


class BuiltinFunctionHandler(FunctionHandler):
    """Wraps a Python callable. Arity comes from its signature; a keyword-only `ctx` receives the Context."""
    def __init__(self, name: str, func: Callable):
        self.name = name
        self.func = func
        sig = inspect.signature(func)
        positional = [
            p for p in sig.parameters.values()
            if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        ]
        self.minimum_number_of_arguments = sum(1 for p in positional if p.default is inspect.Parameter.empty)
        has_varargs = any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in sig.parameters.values())
        self.maximum_number_of_arguments = None if has_varargs else len(positional)
        self.wants_ctx = 'ctx' in sig.parameters and sig.parameters['ctx'].kind is inspect.Parameter.KEYWORD_ONLY

    async def do_function(self, args, ctx, evaluator, self_dict, line_range) -> VimDataType:
        if self.wants_ctx:
            result = self.func(*args, ctx=ctx)
        else:
            result = self.func(*args)
        if inspect.isawaitable(result):
            result = await result
        return result if result is not None else VimInt(0)


class FunctionDeclaration:
    """A user function as declared: its signature, flags, body and where it was defined."""
    def __init__(self, name: str, scope: Optional[str], params: Sequence[str], body: Sequence[Statement],
                 script: Script, defaults: Sequence[Tuple[str, Expression]] = (), varargs: bool = False,
                 flags: Sequence[str] = (), closure_frame: Optional[Frame] = None):
        self.name = name
        self.scope = scope
        self.params = tuple(params)
        self.defaults = tuple(defaults)
        self.varargs = varargs
        self.flags = frozenset(flags)
        self.body = tuple(body)
        self.script = script
        self.closure_frame = closure_frame
        self.is_deleted = False
        self.handler = DefinedFunctionHandler(self)

    @classmethod
    def from_node(cls, node, name: str, scope: Optional[str], ctx: Context) -> 'FunctionDeclaration':
        closure_frame = ctx.frame if 'closure' in node.flags else None
        return cls(name, scope, node.params, node.body, ctx.script, defaults=node.defaults,
                   varargs=node.varargs, flags=node.flags, closure_frame=closure_frame)

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags

    def __repr__(self) -> str:
        return f"<FunctionDeclaration {self.name} flags={sorted(self.flags)}>"


class DefinedFunctionHandler(FunctionHandler):
    """Runs a `FunctionDeclaration`: binds arguments into a fresh Frame and executes the body."""
    def __init__(self, declaration: FunctionDeclaration):
        self.declaration = declaration
        self.name = declaration.name
        self.scope = declaration.scope
        self.minimum_number_of_arguments = len(declaration.params)
        if declaration.varargs:
            self.maximum_number_of_arguments = None
        else:
            self.maximum_number_of_arguments = len(declaration.params) + len(declaration.defaults)

    @property
    def is_deleted(self) -> bool:
        return self.declaration.is_deleted

    @property
    def is_dict(self) -> bool:
        return self.declaration.has_flag('dict')

    async def do_function(self, args, ctx, evaluator, self_dict, line_range) -> VimDataType:
        decl = self.declaration
        if self.is_dict and self_dict is None:
            raise vim_error("E725", self.display_name)

        if line_range is None:
            line = ctx.host.current_line()
            return await self._run(args, ctx, evaluator, self_dict, line, line)

        first, last = line_range
        if decl.has_flag('range'):
            return await self._run(args, ctx, evaluator, self_dict, first, last)

        result: VimDataType = VimInt(0)
        for line in range(first, last + 1):
            ctx.host.set_current_line(line)
            result = await self._run(args, ctx, evaluator, self_dict, first, last)
        return result

    async def _bind_arguments(self, args: List[VimDataType], frame: Frame, fctx: Context,
                              evaluator: 'Evaluator', first_line: int, last_line: int):
        decl = self.declaration
        arguments = frame.arguments
        for name, value in zip(decl.params, args):
            arguments[name] = value
        rest = args[len(decl.params):]
        for i, (name, default) in enumerate(decl.defaults):
            if i < len(rest):
                arguments[name] = rest[i]
            else:
                arguments[name] = await evaluator.evaluate(default, fctx)
        if decl.varargs:
            extra = rest[len(decl.defaults):]
            arguments['000'] = VimList(extra)
            arguments['0'] = VimInt(len(extra))
            for i, value in enumerate(extra, 1):
                arguments[str(i)] = value
        arguments['firstline'] = VimInt(first_line)
        arguments['lastline'] = VimInt(last_line)
        evaluator._dbg("Bind arguments", decl.name, list(arguments.keys()))

    async def _run(self, args, ctx, evaluator, self_dict, first_line: int, last_line: int) -> VimDataType:
        decl = self.declaration
        frame = Frame(decl.name, parent=decl.closure_frame, is_closure=decl.has_flag('closure'))
        if self.is_dict:
            frame.self_dict = self_dict
            frame.locals['self'] = self_dict
        fctx = Context(ctx.host, decl.script, frame)

        evaluator._push_frame(self.display_name, self, args)
        try:
            await self._bind_arguments(args, frame, fctx, evaluator, first_line, last_line)
            if decl.has_flag('abort'):
                return await self._run_abort(fctx, evaluator)
            return await self._run_no_abort(fctx, evaluator)
        except VimError as e:
            if e.throwpoint is None:
                e.throwpoint = evaluator.throwpoint(fctx)
            raise
        finally:
            evaluator._pop_frame()

    async def _run_abort(self, fctx: Context, evaluator: 'Evaluator') -> VimDataType:
        signal = Success
        for stmt in self.declaration.body:
            signal = await evaluator.execute_statement(stmt, fctx)
            if signal is not Success:
                break
        if signal is Break:
            raise vim_error("E587")
        if signal is Continue:
            raise vim_error("E586")
        if isinstance(signal, Return):
            return signal.value
        if isinstance(signal, Error):
            evaluator.report_error(signal.error, fctx)
        return VimInt(0)

    async def _run_no_abort(self, fctx: Context, evaluator: 'Evaluator') -> VimDataType:
        for stmt in self.declaration.body:
            try:
                signal = await evaluator.execute_statement(stmt, fctx)
            except ScriptFinish:
                raise
            except VimError as e:
                evaluator.report_error(e, fctx)
                continue
            if isinstance(signal, Return):
                return signal.value
            if signal is Break:
                evaluator.report_error(vim_error("E587"), fctx)
            elif signal is Continue:
                evaluator.report_error(vim_error("E586"), fctx)
            elif isinstance(signal, Error):
                evaluator.report_error(signal.error, fctx)
        return VimInt(0)


def is_valid_global_name(name: str) -> bool:
    return name[:1].isupper() or '#' in name


class FunctionRegistry:
    """Where named functions live: built-ins, `g:` functions, per-script `s:` functions and numbered dict functions."""

    def __init__(self, builtins: Optional[Dict[str, FunctionHandler]] = None):
        self.builtins: Dict[str, FunctionHandler] = dict(builtins or {})
        self.globals: Dict[str, FunctionDeclaration] = {}
        # Numbered functions created by `function dict.key()`
        self.anonymous: Dict[str, FunctionDeclaration] = {}
        self._anonymous_counter = 0
        self._lambda_counter = 0

    # --- Lookup ---

    def get_handler_or_none(self, scope: Optional[str], name: str, ctx: Context) -> Optional[FunctionHandler]:
        decl: Optional[FunctionDeclaration] = None
        if scope is None:
            builtin = self.builtins.get(name)
            if builtin is not None:
                return builtin
            decl = self.globals.get(name) or self.anonymous.get(name) or ctx.script.functions.get(name)
        elif scope == 'g':
            decl = self.globals.get(name)
        elif scope == 's':
            decl = ctx.script.functions.get(name)
        return decl.handler if decl is not None else None

    def get_handler(self, scope: Optional[str], name: str, ctx: Context) -> FunctionHandler:
        handler = self.get_handler_or_none(scope, name, ctx)
        if handler is None:
            raise vim_error("E117", f"{scope}:{name}" if scope else name)
        return handler

    def _table(self, scope: Optional[str], ctx: Context) -> Dict[str, FunctionDeclaration]:
        if scope == 's':
            return ctx.script.functions
        return self.globals

    # --- Declaration ---

    def declare(self, node, ctx: Context) -> FunctionDeclaration:
        """Stores a `function` statement's declaration, replacing an existing one only with `!`."""
        scope, name = node.scope, node.name
        if scope not in (None, 'g', 's'):
            raise vim_error("E884", f"{scope}:{name}")
        if scope != 's' and not is_valid_global_name(name):
            raise vim_error("E128", name)
        table = self._table(scope, ctx)
        if name in table and not node.bang:
            raise vim_error("E122", name)
        decl = FunctionDeclaration.from_node(node, name, scope if scope == 's' else None, ctx)
        table[name] = decl
        return decl

    def store(self, decl: FunctionDeclaration, ctx: Context, replace: bool = False):
        """Registers an already-built declaration under its own name and scope."""
        table = self._table(decl.scope, ctx)
        if decl.name in table and not replace:
            raise vim_error("E122", decl.name)
        table[decl.name] = decl

    def declare_dict_function(self, node, dictionary: VimDataType, ctx: Context) -> FunctionDeclaration:
        if not isinstance(dictionary, VimDictionary):
            raise vim_error("E715")
        existing = dictionary.get(node.key)
        if existing is not None:
            if not isinstance(existing, VimFuncref):
                raise vim_error("E718")
            if not node.bang:
                raise vim_error("E717")
        if dictionary.is_locked:
            raise vim_error("E741", node.key)
        self._anonymous_counter += 1
        name = str(self._anonymous_counter)
        decl = FunctionDeclaration.from_node(node, name, None, ctx)
        self.anonymous[name] = decl
        dictionary[node.key] = VimFuncref(decl.handler, VimList(), dictionary, FuncrefType.FUNCREF)
        return decl

    def delete(self, scope: Optional[str], name: str, ctx: Context, bang: bool = False):
        table = self._table(scope, ctx)
        decl = table.get(name)
        if decl is None and scope is None:
            table = self.anonymous
            decl = table.get(name)
        if decl is None:
            if bang:
                return
            raise vim_error("E130", f"{scope}:{name}" if scope else name)
        decl.is_deleted = True
        del table[name]

    # --- Lambdas ---

    def make_lambda(self, params: Sequence[str], body: Expression, ctx: Context) -> VimFuncref:
        """A closure over the current frame; parameters are copied into `l:` so the body can use them unprefixed."""
        self._lambda_counter += 1
        name = f"<lambda>{self._lambda_counter}"
        statements: List[Statement] = [
            Let(Variable('l', [p]), '=', Variable('a', [p])) for p in params
        ]
        statements.append(ReturnStmt(body))
        decl = FunctionDeclaration(name, None, params, statements, ctx.script,
                                   varargs=True, flags=('closure',), closure_frame=ctx.frame)
        return VimFuncref(decl.handler, VimList(), None, FuncrefType.LAMBDA)
