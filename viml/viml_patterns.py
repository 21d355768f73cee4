"""
The default pattern-matching collaborator.

Vim patterns are not implemented here; the common "magic" atoms are
rewritten into Python `re` syntax and everything else is matched by `re`.
Hosts with a real Vim regex engine pass their own matcher to `ScriptRunner`.
"""
import re
from functools import lru_cache

from viml.viml_errors import vim_error


# Backslash atoms that become Python regex syntax.
_ESCAPED = {
    "<": r"\b",
    ">": r"\b",
    "(": "(",
    ")": ")",
    "|": "|",
    "+": "+",
    "=": "?",
    "?": "?",
    "a": "[A-Za-z]",
    "A": "[^A-Za-z]",
    "l": "[a-z]",
    "u": "[A-Z]",
    "x": "[0-9A-Fa-f]",
    "/": "/",
}
# Backslash atoms with the same meaning in both dialects.
_SAME = set("sSdDwWntr.*[]\\^$~")
# Characters that are literal in a magic Vim pattern but special to `re`.
_LITERAL = set("()|+?{}")


def _multi(bounds: str) -> str:
    """`\\{n,m}` counts; a leading '-' makes them non-greedy."""
    lazy = bounds.startswith("-")
    bounds = bounds.lstrip("-").rstrip("\\")
    if bounds in ("", ","):
        out = "*"
    else:
        out = "{" + bounds + "}"
    return out + "?" if lazy else out


def translate(pattern: str):
    """Returns (python_regex, flags) for a Vim pattern."""
    out = []
    flags = 0
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "\\" and i + 1 < n:
            nxt = pattern[i + 1]
            i += 2
            if nxt == "{":
                end = pattern.find("}", i)
                if end < 0:
                    raise vim_error("E383", pattern)
                out.append(_multi(pattern[i:end]))
                i = end + 1
            elif nxt == "c":
                flags |= re.IGNORECASE
            elif nxt == "C":
                flags &= ~re.IGNORECASE
            elif nxt in _ESCAPED:
                out.append(_ESCAPED[nxt])
            elif nxt in _SAME:
                out.append("\\" + nxt)
            else:
                out.append(re.escape(nxt))
            continue
        if c in _LITERAL:
            out.append("\\" + c)
        elif c == "~":
            out.append("~")
        else:
            out.append(c)
        i += 1
    return "".join(out), flags


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern:
    regex, flags = translate(pattern)
    try:
        return re.compile(regex, flags)
    except re.error:
        raise vim_error("E383", pattern)


def default_matcher(pattern: str, text: str) -> bool:
    return compile_pattern(pattern).search(text) is not None
