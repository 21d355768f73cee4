"""
Variable scopes and the variable store.

A variable lives in exactly one namespace selected by its scope prefix:

    g:  global                      s:  script-local (one per Script)
    l:  function-local (per Frame)  a:  function arguments (read-only)
    v:  Vim variables (read-only)   b: w: t:  buffer/window/tabpage (host)

Unscoped names mean `l:` inside a function and `g:` elsewhere. Frames of
`closure` functions and lambdas also see the `l:` and `a:` variables of
the frames they were created in, innermost winning.
"""
from typing import Any, Dict, List, Optional, Tuple

from viml.viml_datatypes import VimDataType, VimDictionary, VimInt, VimString
from viml.viml_errors import VimError, vim_error


SCOPES = ("g", "s", "l", "a", "v", "b", "w", "t")
READ_ONLY_SCOPES = ("a", "v")


class Script:
    """One executed script: owns the `s:` variables and the script-local functions."""
    _counter = 0

    def __init__(self, name: Optional[str] = None):
        Script._counter += 1
        self.sid = Script._counter
        self.name = name or f"<script-{self.sid}>"
        self.variables = VimDictionary()
        # s: functions, by bare name
        self.functions: Dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"<Script {self.name}>"


class Frame:
    """Activation record of one user-function call."""
    def __init__(self, name: str, parent: Optional['Frame'] = None, is_closure: bool = False):
        self.name = name
        self.locals = VimDictionary()
        self.arguments = VimDictionary()
        # The frame the called function was defined in; only consulted for closures.
        self.parent = parent
        self.is_closure = is_closure
        self.self_dict: Optional[VimDictionary] = None

    def visible(self, attr: str) -> List[VimDictionary]:
        """Namespaces consulted for `attr` ('locals' or 'arguments'), innermost first."""
        out = []
        frame = self
        while frame is not None:
            out.append(getattr(frame, attr))
            if not frame.is_closure:
                break
            frame = frame.parent
        return out

    @property
    def sees_globals(self) -> bool:
        """True for closures created at script level: unscoped names fall back to `g:`."""
        frame = self
        while frame.is_closure:
            if frame.parent is None:
                return True
            frame = frame.parent
        return False

    def __repr__(self) -> str:
        return f"<Frame {self.name}>"


class Context:
    """What every evaluation is performed against: the host, the running script and the current frame."""
    def __init__(self, host, script: Script, frame: Optional[Frame] = None):
        self.host = host
        self.script = script
        self.frame = frame

    @property
    def in_function(self) -> bool:
        return self.frame is not None

    def with_frame(self, frame: Optional[Frame]) -> 'Context':
        return Context(self.host, self.script, frame)

    def with_script(self, script: Script) -> 'Context':
        return Context(self.host, script, self.frame)

    def __repr__(self) -> str:
        return f"<Context {self.script.name} frame={self.frame!r}>"


def split_scope(name: str) -> Tuple[Optional[str], str]:
    """'g:foo' -> ('g', 'foo'); 'foo' -> (None, 'foo')."""
    if len(name) > 2 and name[1] == ":" and name[0] in SCOPES:
        return name[0], name[2:]
    return None, name


def display_name(scope: Optional[str], name: str) -> str:
    return f"{scope}:{name}" if scope else name


class VariableStore:
    """Global and Vim variables, and scope resolution for all other namespaces."""

    def __init__(self):
        self.globals = VimDictionary()
        self.vim_variables = VimDictionary({
            "exception": VimString(""),
            "throwpoint": VimString(""),
            "errmsg": VimString(""),
            "count": VimInt(0),
            "count1": VimInt(1),
            "true": VimInt(1),
            "false": VimInt(0),
        })

    # --- Namespace resolution ---

    def default_scope(self, ctx: Context) -> str:
        return "l" if ctx.in_function else "g"

    def namespaces(self, scope: Optional[str], name: str, ctx: Context) -> List[VimDictionary]:
        """The namespaces a read of `scope:name` consults, in order."""
        if scope is None and ctx.frame is not None and ctx.frame.sees_globals:
            return ctx.frame.visible("locals") + [self.globals]
        scope = scope or self.default_scope(ctx)
        match scope:
            case "g":
                return [self.globals]
            case "s":
                return [ctx.script.variables]
            case "v":
                return [self.vim_variables]
            case "l":
                if ctx.frame is None:
                    raise vim_error("E461", display_name("l", name))
                return ctx.frame.visible("locals")
            case "a":
                if ctx.frame is None:
                    raise vim_error("E461", display_name("a", name))
                return ctx.frame.visible("arguments")
            case "b":
                return [ctx.host.buffer_variables()]
            case "w":
                return [ctx.host.window_variables()]
            case "t":
                return [ctx.host.tab_variables()]
            case _:
                raise vim_error("E461", display_name(scope, name))

    def namespace(self, scope: Optional[str], ctx: Context) -> VimDictionary:
        """The namespace a write into `scope` lands in (the innermost one)."""
        return self.namespaces(scope, "", ctx)[0]

    # --- Reads ---

    def get(self, scope: Optional[str], name: str, ctx: Context) -> Optional[VimDataType]:
        """Value of the variable, or None when it is not defined."""
        for ns in self.namespaces(scope, name, ctx):
            value = ns.get(name)
            if value is not None:
                return value
        return None

    def get_or_fail(self, scope: Optional[str], name: str, ctx: Context) -> VimDataType:
        value = self.get(scope, name, ctx)
        if value is None:
            raise vim_error("E121", display_name(scope, name))
        return value

    def exists(self, scope: Optional[str], name: str, ctx: Context) -> bool:
        try:
            return self.get(scope, name, ctx) is not None
        except VimError:
            return False

    # --- Writes ---

    def check_writable(self, scope: Optional[str], name: str, ctx: Context):
        effective = scope or self.default_scope(ctx)
        if effective in READ_ONLY_SCOPES:
            raise vim_error("E46", display_name(scope, name))
        if effective == "l" and name == "self" and ctx.frame is not None and ctx.frame.self_dict is not None:
            raise vim_error("E46", "self")

    def set(self, scope: Optional[str], name: str, value: VimDataType, ctx: Context):
        """Creates or overwrites a variable; a variable locked with `lockvar` refuses (E741).

        An unscoped name already visible through a closure is updated where it lives.
        """
        self.check_writable(scope, name, ctx)
        ns = None
        if scope is None:
            ns = self._owning_namespace(scope, name, ctx)
        if ns is None:
            ns = self.namespace(scope, ctx)
        if name in ns.locked_names:
            raise vim_error("E741", display_name(scope, name))
        ns[name] = value

    def set_vim_variable(self, name: str, value: VimDataType):
        """Runtime-internal write into `v:`, which scripts cannot do."""
        self.vim_variables[name] = value

    def unlet(self, scope: Optional[str], name: str, ctx: Context, bang: bool = False):
        self.check_writable(scope, name, ctx)
        ns = self.namespace(scope, ctx)
        current = ns.get(name)
        if current is None:
            if bang:
                return
            raise vim_error("E108", display_name(scope, name))
        if name in ns.locked_names:
            raise vim_error("E741", display_name(scope, name))
        del ns.dictionary[name]

    # --- Locking ---

    def _owning_namespace(self, scope: Optional[str], name: str, ctx: Context) -> Optional[VimDictionary]:
        for ns in self.namespaces(scope, name, ctx):
            if name in ns:
                return ns
        return None

    def lock(self, scope: Optional[str], name: str, depth: int, ctx: Context):
        ns = self._owning_namespace(scope, name, ctx)
        if ns is None:
            raise vim_error("E108", display_name(scope, name))
        ns.locked_names = set(ns.locked_names) | {name}
        ns[name].lock_var(depth)

    def unlock(self, scope: Optional[str], name: str, depth: int, ctx: Context):
        ns = self._owning_namespace(scope, name, ctx)
        if ns is None:
            raise vim_error("E108", display_name(scope, name))
        ns.locked_names = set(ns.locked_names) - {name}
        ns[name].unlock_var(depth)

    def is_locked(self, scope: Optional[str], name: str, ctx: Context) -> bool:
        ns = self._owning_namespace(scope, name, ctx)
        if ns is None:
            return False
        return name in ns.locked_names or ns[name].is_locked

    def clear(self):
        self.globals.dictionary.clear()
        self.globals.locked_names = frozenset()
