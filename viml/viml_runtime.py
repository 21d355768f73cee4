# viml_runtime.py

import inspect
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

import yaml

from viml.viml_datatypes import VimDataType, VimDictionary
from viml.viml_errors import VimError
from viml.viml_interpreter import Evaluator
from viml.viml_nodes import Node, ScriptBody
from viml.viml_scopes import Context, Script, split_scope
from viml.viml_serialize import deserialize, to_vim, to_python

# ===================================================================
# 1. Host capability
# ===================================================================


class VimHost(ABC):
    """The editor the interpreter runs inside.

    Only messaging and the cursor are required; the rest have inert
    defaults so a host implements what it actually has.
    """

    @abstractmethod
    def show_message(self, text: str): raise NotImplementedError
    @abstractmethod
    def current_line(self) -> int: raise NotImplementedError
    @abstractmethod
    def line_count(self) -> int: raise NotImplementedError
    @abstractmethod
    def line_text(self, line: int) -> str: raise NotImplementedError

    def indicate_error(self):
        pass

    def set_current_line(self, line: int):
        pass

    def current_column(self) -> int:
        return 1

    def buffer_variables(self) -> VimDictionary:
        return self._namespace('_buffer_vars')

    def window_variables(self) -> VimDictionary:
        return self._namespace('_window_vars')

    def tab_variables(self) -> VimDictionary:
        return self._namespace('_tab_vars')

    def _namespace(self, attr: str) -> VimDictionary:
        ns = getattr(self, attr, None)
        if ns is None:
            ns = VimDictionary()
            setattr(self, attr, ns)
        return ns

    def get_option(self, name: str, scope: Optional[str] = None) -> Any:
        """Current value of an option, or None when there is no such option."""
        return None

    def set_option(self, name: str, value: Any, scope: Optional[str] = None):
        pass

    def get_register(self, name: str) -> Optional[str]:
        return None

    def set_register(self, name: str, text: str):
        pass

    def get_env(self, name: str) -> Optional[str]:
        return os.environ.get(name)

    def set_env(self, name: str, value: str):
        os.environ[name] = value

    def input(self, prompt: str, text: str = "") -> str:
        return text

    def execute_command(self, name: str, argument: str, bang: bool = False) -> bool:
        """Runs an ex command the interpreter does not know. False means "not an editor command"."""
        return False


DEFAULT_OPTIONS = {
    'ignorecase': 0,
    'smartcase': 0,
    'shiftwidth': 8,
    'tabstop': 8,
    'expandtab': 0,
    'maxfuncdepth': 100,
}


class BufferHost(VimHost):
    """A self-contained host over an in-memory list of lines."""

    def __init__(self, lines: Optional[List[str]] = None, *, options: Optional[Dict[str, Any]] = None,
                 env: Optional[Dict[str, str]] = None, inputs: Optional[List[str]] = None):
        self.lines: List[str] = list(lines) if lines is not None else [""]
        self.cursor_line = 1
        self.cursor_column = 1
        self.options: Dict[str, Any] = dict(DEFAULT_OPTIONS)
        self.options.update(options or {})
        self.env: Dict[str, str] = dict(env) if env is not None else dict(os.environ)
        self.registers: Dict[str, str] = {}
        self.inputs: List[str] = list(inputs or [])
        self.messages: List[str] = []
        self.error_count = 0
        self.commands: Dict[str, Callable] = {}
        self.executed: List[tuple] = []

    def register_command(self, name: str, func: Callable):
        """`func(argument, bang)` runs when a script uses `:name`. It may be a coroutine function."""
        self.commands[name] = func

    # --- Messages ---

    def show_message(self, text: str):
        self.messages.append(text)

    def indicate_error(self):
        self.error_count += 1

    # --- Buffer ---

    def current_line(self) -> int:
        return self.cursor_line

    def set_current_line(self, line: int):
        self.cursor_line = max(1, min(line, len(self.lines)))

    def current_column(self) -> int:
        return self.cursor_column

    def line_count(self) -> int:
        return len(self.lines)

    def line_text(self, line: int) -> str:
        if 1 <= line <= len(self.lines):
            return self.lines[line - 1]
        return ""

    # --- Options, registers, environment ---

    def get_option(self, name: str, scope: Optional[str] = None) -> Any:
        return self.options.get(name)

    def set_option(self, name: str, value: Any, scope: Optional[str] = None):
        self.options[name] = value

    def get_register(self, name: str) -> Optional[str]:
        return self.registers.get(name.lower())

    def set_register(self, name: str, text: str):
        key = name.lower()
        # An uppercase register name appends
        if name.isupper():
            text = self.registers.get(key, "") + text
        self.registers[key] = text

    def get_env(self, name: str) -> Optional[str]:
        return self.env.get(name)

    def set_env(self, name: str, value: str):
        self.env[name] = value

    def input(self, prompt: str, text: str = "") -> str:
        if self.inputs:
            return self.inputs.pop(0)
        return text

    async def execute_command(self, name: str, argument: str, bang: bool = False) -> bool:
        self.executed.append((name, argument, bang))
        func = self.commands.get(name)
        if func is None:
            return False
        result = func(argument, bang)
        if inspect.isawaitable(result):
            result = await result
        return result is not False


# ===================================================================
# 2. Runner
# ===================================================================


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Dict] = None
    messages: List[str] = field(default_factory=list)
    errors: List[VimError] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


def _token(node: Optional[Node]) -> Optional[Dict]:
    line = getattr(node, 'line', None)
    if line is None:
        return None
    return {'line': line, 'col': getattr(node, 'col', None), 'tag': type(node).__name__}


class ScriptRunner:
    """Transforms and executes VimL parser trees against a host.

    Global variables and functions persist across `handle_script` calls;
    each call gets a fresh `s:` namespace.
    """

    def __init__(self, host: Optional[VimHost] = None, *, max_func_depth: Optional[int] = None,
                 parser: Optional[Callable] = None, matcher: Optional[Callable[[str, str], bool]] = None):
        self.host = host if host is not None else BufferHost()
        self.parser = parser
        self.evaluator = Evaluator(max_func_depth=max_func_depth, parser=parser, matcher=matcher)
        self.transformer = self.evaluator.transformer

    def _load(self, source: Any) -> ScriptBody:
        if isinstance(source, ScriptBody):
            return source
        if isinstance(source, (str, bytes)):
            tree = None
            try:
                tree = deserialize(source)
            except yaml.YAMLError:
                if self.parser is None:
                    raise
            if not isinstance(tree, (list, dict)):
                if self.parser is None:
                    raise ValueError("Expected a statement tree document")
                text = source.decode('utf-8') if isinstance(source, bytes) else source
                tree = self.parser(text)
            source = tree
        return self.transformer.transform(source)

    def _reset(self):
        ev = self.evaluator
        ev.errors.clear()
        ev.messages.clear()
        ev.call_stack.clear()
        ev.current_node = None

    def _result(self, value: Any = None) -> ExecutionResult:
        ev = self.evaluator
        if ev.errors:
            first = ev.errors[0]
            return ExecutionResult(
                status='error',
                value=value,
                error_message=str(first),
                error_token=_token(first.node),
                messages=list(ev.messages),
                errors=list(ev.errors),
            )
        return ExecutionResult(status='success', value=value, messages=list(ev.messages))

    def _internal_error(self, e: Exception) -> ExecutionResult:
        ev = self.evaluator
        ev._dbg("internal error", type(e).__name__, e)
        return ExecutionResult(
            status='error',
            error_message=f"InternalError: {e}",
            error_token=_token(ev.current_node),
            messages=list(ev.messages),
            errors=list(ev.errors),
        )

    async def handle_script(self, source: Any, name: Optional[str] = None) -> ExecutionResult:
        """The main entry point to execute a script. Never raises."""
        self._reset()
        try:
            body = self._load(source)
        except Exception as e:
            return ExecutionResult(status='error', error_message=f"ParseError: {e}")
        ctx = Context(self.host, Script(name), None)
        try:
            await self.evaluator.run_script(body.body, ctx)
        except Exception as e:
            return self._internal_error(e)
        return self._result()

    async def evaluate(self, tree: Any) -> ExecutionResult:
        """Evaluates a single expression tree; the value is returned as a Vim value."""
        self._reset()
        try:
            if isinstance(tree, (str, bytes)):
                tree = deserialize(tree)
            node = self.transformer.expression(tree)
        except Exception as e:
            return ExecutionResult(status='error', error_message=f"ParseError: {e}")
        ctx = Context(self.host, Script(), None)
        try:
            value = await self.evaluator.evaluate(node, ctx)
        except VimError as e:
            self.evaluator.report_error(e, ctx)
            return self._result()
        except Exception as e:
            return self._internal_error(e)
        return self._result(value)

    # --- Python-side conveniences ---

    async def call(self, name: str, *args: Any) -> Any:
        """Calls a VimL function with Python arguments and returns a Python value. Raises VimError."""
        ctx = Context(self.host, Script(), None)
        result = await self.evaluator.call_function(name, [to_vim(a) for a in args], ctx)
        return to_python(result)

    def get_variable(self, name: str) -> Any:
        """Python value of a `g:` (or `v:`) variable, or None when undefined."""
        scope, bare = split_scope(name)
        ns = self.evaluator.variables.vim_variables if scope == 'v' else self.evaluator.variables.globals
        value: Optional[VimDataType] = ns.get(bare)
        return to_python(value) if value is not None else None

    def set_variable(self, name: str, value: Any):
        scope, bare = split_scope(name)
        if scope not in (None, 'g'):
            raise ValueError(f"Only global variables can be set from Python: {name}")
        self.evaluator.variables.globals[bare] = to_vim(value)
