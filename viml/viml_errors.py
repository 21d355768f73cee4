"""
Errors and control-flow signals for the VimL runtime.

Every runtime failure is a `VimError` carrying a stable Vim error code
(`E117`, `E728`, ...) and a message. `ScriptFinish` is the distinguished
early-termination error raised by `:finish`; only `finally` ever sees it.

Statement execution threads a separate control signal (`Success`, `Break`,
`Continue`, `Return(value)`, `Error(error)`) so that misplaced `break` and
`continue` are only turned into numbered errors at a function boundary.
"""
from typing import Any, Optional


# Message templates keyed by error code. Texts follow Vim's own wording.
MESSAGES = {
    "E16": "Invalid range",
    "E46": "Cannot change read-only variable {0}",
    "E108": "No such variable: \"{0}\"",
    "E117": "Unknown function: {0}",
    "E118": "Too many arguments for function: {0}",
    "E119": "Not enough arguments for function: {0}",
    "E121": "Undefined variable: {0}",
    "E122": "Function {0} already exists, add ! to replace it",
    "E128": "Function name must start with a capital or \"s:\": {0}",
    "E129": "Function name required",
    "E130": "Unknown function: {0}",
    "E132": "Function call depth is higher than 'maxfuncdepth'",
    "E133": ":return not inside a function",
    "E354": "Invalid register name: '{0}'",
    "E383": "Invalid search string: {0}",
    "E461": "Illegal variable name: {0}",
    "E474": "Invalid argument",
    "E475": "Invalid argument: {0}",
    "E492": "Not an editor command: {0}",
    "E518": "Unknown option: {0}",
    "E586": ":continue without :while or :for: continue",
    "E587": ":break without :while or :for: break",
    "E608": "Cannot :throw exceptions with 'Vim' prefix",
    "E684": "list index out of range: {0}",
    "E686": "Argument of {0} must be a List",
    "E688": "More targets than List items",
    "E689": "Can only index a List, Dictionary or Blob",
    "E691": "Can only compare List with List",
    "E692": "Invalid operation for List",
    "E694": "Invalid operation for Funcrefs",
    "E695": "Cannot index a Funcref",
    "E700": "Unknown function: {0}",
    "E701": "Invalid type for len()",
    "E703": "Using a Funcref as a Number",
    "E709": "[:] requires a List or Blob value",
    "E710": "List value has more items than targets",
    "E711": "List value does not have enough items",
    "E712": "Argument of {0} must be a List or Dictionary",
    "E714": "List required",
    "E715": "Dictionary required",
    "E716": "Key not present in Dictionary: \"{0}\"",
    "E717": "Dictionary entry already exists",
    "E718": "Funcref required",
    "E719": "Cannot slice a Dictionary",
    "E721": "Duplicate key in Dictionary: \"{0}\"",
    "E725": "Calling dict function without Dictionary: {0}",
    "E726": "Stride is zero",
    "E727": "Start past end",
    "E728": "Using a Dictionary as a Number",
    "E729": "Using a Funcref as a String",
    "E730": "Using a List as a String",
    "E731": "Using a Dictionary as a String",
    "E735": "Can only compare Dictionary with Dictionary",
    "E736": "Invalid operation for Dictionary",
    "E737": "Key already exists: {0}",
    "E741": "Value is locked: {0}",
    "E745": "Using a List as a Number",
    "E804": "Cannot use '%' with Float",
    "E805": "Using a Float as a Number",
    "E806": "Using a Float as a String",
    "E808": "Number or Float required",
    "E884": "Function name cannot contain a colon: {0}",
    "E896": "Argument of {0} must be a List, Dictionary or Blob",
    "E897": "List or Blob required",
    "E933": "Function was deleted: {0}",
    "E974": "Using a Blob as a Number",
    "E976": "Using a Blob as a String",
    "E979": "Blob index out of range: {0}",
    "E1098": "String, List or Blob required",
}


class VimError(Exception):
    """A runtime error with an optional Vim error code.

    `str(err)` is the text a script sees in `v:exception` and in `catch`
    patterns: `"E117: Unknown function: Foo"`, or the raw string passed
    to `:throw` for user exceptions (which carry no code).
    """
    # Statement that was executing when the error was reported, if known.
    node = None
    # "Func, line N" of the innermost function the error left, for v:throwpoint.
    throwpoint = None

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.text = message

    @property
    def message(self) -> str:
        if self.code:
            return f"{self.code}: {self.text}"
        return self.text

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"VimError({self.message!r})"


class ScriptFinish(VimError):
    """Raised by `:finish`. Never caught by `catch`; always rethrown after `finally`."""
    def __init__(self):
        super().__init__("finish")

    def __repr__(self) -> str:
        return "ScriptFinish()"


def vim_error(code: str, *args: Any) -> VimError:
    """Builds a `VimError` from the message table."""
    template = MESSAGES.get(code)
    if template is None:
        raise KeyError(f"unknown Vim error code {code!r}")
    return VimError(template.format(*args), code)


# =================================================================
# Control signals
# =================================================================

class Signal:
    """Base class for the outcome of executing a statement."""
    pass


class _SingletonSignal(Signal):
    """Internal helper class for the stateless signals."""
    def __init__(self, name):
        self._name = name

    def __repr__(self):
        return f"{self._name.capitalize()}<>"


# Singleton instances for stateless signals
Success = _SingletonSignal("success")
Break = _SingletonSignal("break")
Continue = _SingletonSignal("continue")


class Return(Signal):
    """`:return`; carries the value handed back to the caller."""
    def __init__(self, value):
        self.value = value

    def __repr__(self) -> str:
        return f"Return({self.value!r})"

    def __eq__(self, other):
        return isinstance(other, Return) and self.value == other.value


class Error(Signal):
    """A statement that failed without raising, e.g. an ex command the host refused."""
    def __init__(self, error: VimError):
        self.error = error

    def __repr__(self) -> str:
        return f"Error({self.error!r})"


__all__ = [
    "MESSAGES",
    "VimError",
    "ScriptFinish",
    "vim_error",
    "Signal",
    "Success",
    "Break",
    "Continue",
    "Return",
    "Error",
]
