"""
Renders values the way `:echo` and `string()` show them.
"""
from decimal import Decimal, Context, ROUND_HALF_UP
import math

from viml.viml_datatypes import (
    VimDataType, VimInt, VimFloat, VimString, VimList, VimDictionary, VimFuncref, VimBlob,
)


_FLOAT_CONTEXT = Context(prec=1000)
_SIX_PLACES = Decimal("0.000001")


def format_float(value: float) -> str:
    """Float output: rounded half-up to 6 decimals, trailing zeros stripped, at least one decimal."""
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    d = Decimal(value).quantize(_SIX_PLACES, rounding=ROUND_HALF_UP, context=_FLOAT_CONTEXT)
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if "." not in text:
        text += ".0"
    return text


def quote_string(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


class Printer:
    """Formats values. `pformat` is the `:echo` form, `string` the `string()` form."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def _create_handlers(self):
        return {
            VimInt: self._pformat_int,
            VimFloat: self._pformat_float,
            VimString: self._pformat_string,
            VimList: self._pformat_list,
            VimDictionary: self._pformat_dict,
            VimFuncref: self._pformat_funcref,
            VimBlob: self._pformat_blob,
        }

    def pformat(self, obj: VimDataType, level: int = 0) -> str:
        """Public entry point. Top-level Strings and Funcrefs print bare; nested ones print quoted."""
        if level == 0:
            if isinstance(obj, VimString):
                return obj.value
            if isinstance(obj, VimFuncref):
                return obj.name
        return self._format(obj, level, set())

    def string(self, obj: VimDataType) -> str:
        return self._format(obj, 1, set())

    def _format(self, obj, level, seen):
        handler = self._handlers.get(type(obj))
        if handler is None:
            return repr(obj)
        return handler(obj, level, seen)

    def _pformat_int(self, obj, level, seen):
        return str(obj.value)

    def _pformat_float(self, obj, level, seen):
        return format_float(obj.value)

    def _pformat_string(self, obj, level, seen):
        return quote_string(obj.value)

    def _pformat_list(self, obj, level, seen):
        if id(obj) in seen:
            return "[...]"
        seen.add(id(obj))
        try:
            return "[" + ", ".join(self._format(v, level + 1, seen) for v in obj.values) + "]"
        finally:
            seen.discard(id(obj))

    def _pformat_dict(self, obj, level, seen):
        if id(obj) in seen:
            return "{...}"
        seen.add(id(obj))
        try:
            items = (f"{quote_string(k)}: {self._format(v, level + 1, seen)}" for k, v in obj.dictionary.items())
            return "{" + ", ".join(items) + "}"
        finally:
            seen.discard(id(obj))

    def _pformat_funcref(self, obj, level, seen):
        parts = [quote_string(obj.name)]
        if len(obj.arguments):
            parts.append(self._format(obj.arguments, level + 1, seen))
        if obj.dictionary is not None and obj.is_self_fixed:
            parts.append(self._format(obj.dictionary, level + 1, seen))
        return "function(" + ", ".join(parts) + ")"

    def _pformat_blob(self, obj, level, seen):
        return "0z" + bytes(obj.data).hex().upper()
