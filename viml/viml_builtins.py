"""
The built-in function library.

Every method named `_name` on `BuiltinFunctions` becomes the built-in
`name()`. Arity is read from the method signature; a keyword-only `ctx`
parameter asks for the evaluation Context.
"""
import inspect
import math
import re
from typing import Dict, List

from viml.viml_datatypes import (
    VimDataType, VimInt, VimFloat, VimString, VimList, VimDictionary, VimFuncref, VimBlob,
    FuncrefType, vim_bool,
)
from viml.viml_errors import vim_error
from viml.viml_functions import BuiltinFunctionHandler
from viml.viml_operators import index_value, values_equal, wrap_number, VIM_NUMBER_MAX
from viml.viml_patterns import compile_pattern
from viml.viml_scopes import split_scope


# Characters trim() removes by default.
_TRIM_CHARS = "".join(chr(c) for c in range(0, 33)) + "\xa0"
_FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|inf|nan))", re.IGNORECASE)
_LOCKED_NAME = re.compile(r"([\w:#]+)((?:\.\w+|\[-?\d+\])*)\Z")


def _normalize_index(i: int, length: int) -> int:
    return i + length if i < 0 else i


async def _merge_sort(items: List[VimDataType], cmp) -> List[VimDataType]:
    """Stable sort with an awaitable comparison."""
    if len(items) <= 1:
        return items
    mid = len(items) // 2
    left = await _merge_sort(items[:mid], cmp)
    right = await _merge_sort(items[mid:], cmp)
    out = []
    i = j = 0
    while i < len(left) and j < len(right):
        if await cmp(left[i], right[j]) <= 0:
            out.append(left[i])
            i += 1
        else:
            out.append(right[j])
            j += 1
    out.extend(left[i:])
    out.extend(right[j:])
    return out


class BuiltinFunctions:
    """Python implementations of the VimL built-in functions."""
    def __init__(self, evaluator):
        self.evaluator = evaluator

    def handlers(self) -> Dict[str, BuiltinFunctionHandler]:
        out = {}
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                vim_name = name[1:]
                out[vim_name] = BuiltinFunctionHandler(vim_name, member)
        return out

    # --- helpers ---

    def as_text(self, value: VimDataType) -> str:
        """String items as they are, everything else in its `string()` form."""
        if isinstance(value, VimString):
            return value.value
        return self.evaluator.printer.string(value)

    def make_funcref(self, kind: FuncrefType, name, arglist, dictionary, ctx) -> VimFuncref:
        if isinstance(arglist, VimDictionary) and dictionary is None:
            arglist, dictionary = None, arglist
        if arglist is not None and not isinstance(arglist, VimList):
            raise vim_error("E714")
        if dictionary is not None and not isinstance(dictionary, VimDictionary):
            raise vim_error("E715")
        if isinstance(name, VimFuncref):
            ref = name.copy()
            if arglist is not None:
                ref.arguments = VimList(name.arguments.values + arglist.values)
        else:
            text = name.as_string()
            scope, fname = split_scope(text)
            handler = self.evaluator.functions.get_handler_or_none(scope, fname, ctx)
            if handler is None:
                raise vim_error("E700", text)
            ref = VimFuncref(handler, VimList(arglist.values if arglist is not None else []), None, kind)
        if dictionary is not None:
            ref.dictionary = dictionary
            ref.is_self_fixed = True
        return ref

    def callback(self, func: VimDataType, ctx):
        """An awaitable `(key, value) -> value` from a Funcref or a string expression using v:key/v:val."""
        evaluator = self.evaluator
        if isinstance(func, VimFuncref):
            async def call(key, value):
                return await func.execute([key, value], ctx, evaluator)
            return call

        node = evaluator.parse_expression(func.as_string())

        async def call(key, value):
            store = evaluator.variables
            store.set_vim_variable('key', key)
            store.set_vim_variable('val', value)
            try:
                return await evaluator.evaluate(node, ctx)
            finally:
                del store.vim_variables.dictionary['key']
                del store.vim_variables.dictionary['val']
        return call

    async def map_or_filter(self, container, func, ctx, fname: str, keep: bool):
        if not isinstance(container, (VimList, VimDictionary)):
            raise vim_error("E712", fname)
        if container.is_locked:
            raise vim_error("E741", fname)
        call = self.callback(func, ctx)
        if isinstance(container, VimList):
            new_values = []
            for i, value in enumerate(list(container.values)):
                result = await call(VimInt(i), value)
                if not keep:
                    new_values.append(result)
                elif result.as_boolean():
                    new_values.append(value)
            container.values[:] = new_values
        else:
            for key, value in list(container.items()):
                result = await call(VimString(key), value)
                if not keep:
                    container.dictionary[key] = result
                elif not result.as_boolean():
                    del container.dictionary[key]
        return container

    # --- Numbers ---

    def _abs(self, expr):
        if isinstance(expr, VimFloat):
            return VimFloat(abs(expr.value))
        return VimInt(wrap_number(abs(expr.to_vim_number().value)))

    def _float2nr(self, expr):
        if isinstance(expr, VimInt):
            return expr
        if not isinstance(expr, VimFloat):
            raise vim_error("E808")
        v = expr.value
        if math.isnan(v):
            return VimInt(0)
        if v >= VIM_NUMBER_MAX:
            return VimInt(VIM_NUMBER_MAX)
        if v <= -VIM_NUMBER_MAX:
            return VimInt(-VIM_NUMBER_MAX)
        return VimInt(int(v))

    def _str2float(self, string):
        m = _FLOAT_PREFIX.match(string.as_string())
        if m is None:
            return VimFloat(0.0)
        return VimFloat(float(m.group(1)))

    def _str2nr(self, string, base=None):
        b = base.to_vim_number().value if base is not None else 10
        if b not in (2, 8, 10, 16):
            raise vim_error("E474")
        text = string.as_string().lstrip()
        sign = 1
        if text[:1] in ("+", "-"):
            sign = -1 if text[0] == "-" else 1
            text = text[1:]
        prefix = text[:2].lower()
        if (b, prefix) in ((16, "0x"), (2, "0b"), (8, "0o")):
            text = text[2:]
        digits = "0123456789abcdef"[:b]
        n = 0
        for c in text:
            d = digits.find(c.lower())
            if d < 0:
                break
            n = n * b + d
        return VimInt(wrap_number(sign * n))

    def _range(self, expr, end=None, stride=None):
        if end is None:
            start, last = 0, expr.to_vim_number().value - 1
        else:
            start, last = expr.to_vim_number().value, end.to_vim_number().value
        step = stride.to_vim_number().value if stride is not None else 1
        if step == 0:
            raise vim_error("E726")
        if (step > 0 and last + 1 < start) or (step < 0 and last - 1 > start):
            raise vim_error("E727")
        return VimList([VimInt(i) for i in range(start, last + (1 if step > 0 else -1), step)])

    def _max(self, expr):
        return self.extreme(expr, "max()", max)

    def _min(self, expr):
        return self.extreme(expr, "min()", min)

    def extreme(self, expr, fname, pick):
        if isinstance(expr, VimList):
            values = expr.values
        elif isinstance(expr, VimDictionary):
            values = list(expr.dictionary.values())
        else:
            raise vim_error("E712", fname)
        if not values:
            return VimInt(0)
        return VimInt(pick(v.to_vim_number().value for v in values))

    # --- Strings ---

    def _tolower(self, expr):
        return VimString(expr.as_string().lower())

    def _toupper(self, expr):
        return VimString(expr.as_string().upper())

    def _trim(self, text, mask=None, direction=None):
        s = text.as_string()
        chars = mask.as_string() if mask is not None else ""
        chars = chars or _TRIM_CHARS
        d = direction.to_vim_number().value if direction is not None else 0
        if d not in (0, 1, 2):
            raise vim_error("E475", d)
        if d in (0, 1):
            s = s.lstrip(chars)
        if d in (0, 2):
            s = s.rstrip(chars)
        return VimString(s)

    def _repeat(self, expr, count):
        n = max(count.to_vim_number().value, 0)
        if isinstance(expr, VimList):
            return VimList(expr.values * n)
        return VimString(expr.as_string() * n)

    def _split(self, string, pattern=None, keepempty=None):
        text = string.as_string()
        pat = pattern.as_string() if pattern is not None else ""
        regex = compile_pattern(pat or r"\s\+")
        keep = keepempty is not None and keepempty.as_boolean()
        parts = []
        pos = 0
        for m in regex.finditer(text):
            if m.start() == m.end() and m.start() == pos:
                continue
            parts.append(text[pos:m.start()])
            pos = m.end()
        parts.append(text[pos:])
        if not keep:
            if parts and parts[0] == "":
                parts.pop(0)
            if parts and parts[-1] == "":
                parts.pop()
        return VimList([VimString(p) for p in parts])

    def _join(self, lst, sep=None):
        if not isinstance(lst, VimList):
            raise vim_error("E714")
        separator = sep.as_string() if sep is not None else " "
        return VimString(separator.join(self.as_text(v) for v in lst.values))

    def _string(self, expr):
        return VimString(self.evaluator.printer.string(expr))

    # --- Types and copies ---

    def _type(self, expr):
        return VimInt(expr.type_number)

    def _len(self, expr):
        match expr:
            case VimString():
                return VimInt(len(expr.value))
            case VimInt():
                return VimInt(len(expr.as_string()))
            case VimList() | VimDictionary() | VimBlob():
                return VimInt(len(expr))
        raise vim_error("E701")

    def _empty(self, expr):
        match expr:
            case VimList() | VimDictionary() | VimBlob():
                return vim_bool(len(expr) == 0)
            case VimString():
                return vim_bool(expr.value == "")
            case VimInt() | VimFloat():
                return vim_bool(expr.value == 0)
        return VimInt(0)

    def _copy(self, expr):
        return expr.deep_copy(1)

    def _deepcopy(self, expr, noref=None):
        return expr.deep_copy()

    def _islocked(self, expr, *, ctx):
        m = _LOCKED_NAME.match(expr.as_string())
        if m is None:
            raise vim_error("E475", expr.as_string())
        scope, name = split_scope(m.group(1))
        value = self.evaluator.variables.get(scope, name, ctx)
        if value is None:
            return VimInt(-1)
        if not m.group(2):
            return vim_bool(self.evaluator.variables.is_locked(scope, name, ctx))
        for accessor in re.findall(r"\.\w+|\[-?\d+\]", m.group(2)):
            if accessor.startswith("."):
                key = VimString(accessor[1:])
            else:
                key = VimInt(int(accessor[1:-1]))
            value = index_value(value, key)
        return vim_bool(value.is_locked)

    # --- Lists and Dictionaries ---

    def _add(self, obj, item):
        if isinstance(obj, VimList):
            if obj.is_locked:
                raise vim_error("E741", "add() argument")
            obj.values.append(item)
            return obj
        if isinstance(obj, VimBlob):
            obj.data.append(item.to_vim_number().value & 0xFF)
            return obj
        raise vim_error("E897")

    def _insert(self, obj, item, idx=None):
        if isinstance(obj, VimList):
            if obj.is_locked:
                raise vim_error("E741", "insert() argument")
            i = idx.to_vim_number().value if idx is not None else 0
            pos = _normalize_index(i, len(obj))
            if pos < 0 or pos > len(obj):
                raise vim_error("E684", i)
            obj.values.insert(pos, item)
            return obj
        if isinstance(obj, VimBlob):
            i = idx.to_vim_number().value if idx is not None else 0
            obj.data.insert(_normalize_index(i, len(obj)), item.to_vim_number().value & 0xFF)
            return obj
        raise vim_error("E897")

    def _extend(self, expr1, expr2, expr3=None):
        if isinstance(expr1, VimList) and isinstance(expr2, VimList):
            if expr1.is_locked:
                raise vim_error("E741", "extend() argument")
            items = list(expr2.values)
            if expr3 is None:
                expr1.values.extend(items)
            else:
                i = expr3.to_vim_number().value
                pos = _normalize_index(i, len(expr1))
                if pos < 0 or pos > len(expr1):
                    raise vim_error("E684", i)
                expr1.values[pos:pos] = items
            return expr1
        if isinstance(expr1, VimDictionary) and isinstance(expr2, VimDictionary):
            mode = expr3.as_string() if expr3 is not None else "force"
            if mode not in ("force", "keep", "error"):
                raise vim_error("E475", mode)
            for key, value in list(expr2.items()):
                existing = expr1.get(key)
                if existing is not None:
                    if mode == "error":
                        raise vim_error("E737", key)
                    if mode == "keep":
                        continue
                    if existing.is_locked:
                        raise vim_error("E741", key)
                elif expr1.is_locked:
                    raise vim_error("E741", "extend() argument")
                expr1[key] = value
            return expr1
        raise vim_error("E712", "extend()")

    def _remove(self, obj, idx, end=None):
        if isinstance(obj, VimList):
            if obj.is_locked:
                raise vim_error("E741", "remove() argument")
            i = idx.to_vim_number().value
            first = _normalize_index(i, len(obj))
            if first < 0 or first >= len(obj):
                raise vim_error("E684", i)
            if end is None:
                return obj.values.pop(first)
            j = end.to_vim_number().value
            last = _normalize_index(j, len(obj))
            if last < 0 or last >= len(obj):
                raise vim_error("E684", j)
            if last < first:
                raise vim_error("E16")
            removed = obj.values[first:last + 1]
            del obj.values[first:last + 1]
            return VimList(removed)
        if isinstance(obj, VimDictionary):
            if end is not None:
                raise vim_error("E118", "remove")
            if obj.is_locked:
                raise vim_error("E741", "remove() argument")
            key = idx.as_string()
            if key not in obj:
                raise vim_error("E716", key)
            return obj.dictionary.pop(key)
        if isinstance(obj, VimBlob):
            i = idx.to_vim_number().value
            pos = _normalize_index(i, len(obj))
            if pos < 0 or pos >= len(obj):
                raise vim_error("E979", i)
            return VimInt(obj.data.pop(pos))
        raise vim_error("E896", "remove()")

    def _reverse(self, obj):
        if isinstance(obj, VimList):
            if obj.is_locked:
                raise vim_error("E741", "reverse() argument")
            obj.values.reverse()
            return obj
        if isinstance(obj, VimBlob):
            obj.data.reverse()
            return obj
        raise vim_error("E714")

    def _get(self, container, key, default=None):
        fallback = default if default is not None else VimInt(0)
        match container:
            case VimList() | VimBlob():
                pos = _normalize_index(key.to_vim_number().value, len(container))
                if 0 <= pos < len(container):
                    return container.values[pos] if isinstance(container, VimList) else VimInt(container.data[pos])
                return fallback
            case VimDictionary():
                value = container.get(key.as_string())
                return value if value is not None else fallback
            case VimFuncref():
                what = key.as_string()
                if what == "name":
                    return VimString(container.name)
                if what == "func":
                    return VimFuncref(container.handler, VimList(), None, container.type)
                if what == "args":
                    return VimList(container.arguments.values)
                if what == "dict":
                    return container.dictionary if container.dictionary is not None else fallback
                raise vim_error("E475", what)
        raise vim_error("E896", "get()")

    def _has_key(self, dictionary, key):
        if not isinstance(dictionary, VimDictionary):
            raise vim_error("E715")
        return vim_bool(key.as_string() in dictionary)

    def _keys(self, dictionary):
        if not isinstance(dictionary, VimDictionary):
            raise vim_error("E715")
        return VimList([VimString(k) for k in dictionary.keys()])

    def _values(self, dictionary):
        if not isinstance(dictionary, VimDictionary):
            raise vim_error("E715")
        return VimList(list(dictionary.dictionary.values()))

    def _items(self, dictionary):
        if not isinstance(dictionary, VimDictionary):
            raise vim_error("E715")
        return VimList([VimList([VimString(k), v]) for k, v in dictionary.items()])

    def _index(self, obj, expr, start=None, ic=None):
        ignore_case = ic is not None and ic.as_boolean()
        if isinstance(obj, VimList):
            first = _normalize_index(start.to_vim_number().value, len(obj)) if start is not None else 0
            for i in range(max(first, 0), len(obj)):
                if values_equal(obj.values[i], expr, ignore_case):
                    return VimInt(i)
            return VimInt(-1)
        if isinstance(obj, VimBlob):
            byte = expr.to_vim_number().value
            first = start.to_vim_number().value if start is not None else 0
            for i in range(max(first, 0), len(obj)):
                if obj.data[i] == byte:
                    return VimInt(i)
            return VimInt(-1)
        raise vim_error("E714")

    def _count(self, comp, expr, ic=None, start=None):
        ignore_case = ic is not None and ic.as_boolean()
        match comp:
            case VimList():
                first = _normalize_index(start.to_vim_number().value, len(comp)) if start is not None else 0
                if start is not None and not 0 <= first < max(len(comp), 1):
                    raise vim_error("E684", start.to_vim_number().value)
                return VimInt(sum(1 for v in comp.values[first:] if values_equal(v, expr, ignore_case)))
            case VimDictionary():
                return VimInt(sum(1 for v in comp.dictionary.values() if values_equal(v, expr, ignore_case)))
            case VimString():
                haystack, needle = comp.value, expr.as_string()
                if ignore_case:
                    haystack, needle = haystack.lower(), needle.lower()
                return VimInt(haystack.count(needle) if needle else 0)
        raise vim_error("E712", "count()")

    async def _map(self, expr1, expr2, *, ctx):
        return await self.map_or_filter(expr1, expr2, ctx, "map()", keep=False)

    async def _filter(self, expr1, expr2, *, ctx):
        return await self.map_or_filter(expr1, expr2, ctx, "filter()", keep=True)

    async def _sort(self, lst, how=None, dictionary=None, *, ctx):
        if not isinstance(lst, VimList):
            raise vim_error("E686", "sort()")
        if lst.is_locked:
            raise vim_error("E741", "sort() argument")
        items = list(lst.values)
        mode = None
        if how is not None and not isinstance(how, VimFuncref):
            mode = how.as_string() if isinstance(how, VimString) else str(how.to_vim_number().value)
        if how is None or mode in ("", "0"):
            items.sort(key=self.as_text)
        elif mode in ("1", "i"):
            items.sort(key=lambda v: self.as_text(v).lower())
        elif mode == "n":
            items.sort(key=lambda v: v.value if isinstance(v, (VimInt, VimFloat)) else 0)
        elif mode == "N":
            items.sort(key=lambda v: v.to_vim_number().value if isinstance(v, (VimInt, VimString)) else 0)
        elif mode == "f":
            items.sort(key=lambda v: v.as_double())
        else:
            if isinstance(how, VimFuncref):
                comparator = how
            else:
                comparator = self.make_funcref(FuncrefType.FUNCREF, how, None, None, ctx)
            if dictionary is not None:
                if not isinstance(dictionary, VimDictionary):
                    raise vim_error("E715")
                comparator = comparator.copy()
                comparator.dictionary = dictionary

            async def cmp(a, b):
                result = await comparator.execute([a, b], ctx, self.evaluator)
                return result.to_vim_number().value
            items = await _merge_sort(items, cmp)
        lst.values[:] = items
        return lst

    # --- Functions ---

    async def _call(self, func, arglist, dictionary=None, *, ctx):
        if not isinstance(arglist, VimList):
            raise vim_error("E714")
        if dictionary is not None and not isinstance(dictionary, VimDictionary):
            raise vim_error("E715")
        if isinstance(func, VimFuncref):
            if dictionary is not None:
                func = func.copy()
                func.dictionary = dictionary
            return await func.execute(list(arglist.values), ctx, self.evaluator)
        if isinstance(func, VimString):
            return await self.evaluator.call_function(func.value, list(arglist.values), ctx, self_dict=dictionary)
        raise vim_error("E718")

    def _function(self, name, arglist=None, dictionary=None, *, ctx):
        return self.make_funcref(FuncrefType.FUNCTION, name, arglist, dictionary, ctx)

    def _funcref(self, name, arglist=None, dictionary=None, *, ctx):
        return self.make_funcref(FuncrefType.FUNCREF, name, arglist, dictionary, ctx)

    def _exists(self, expr, *, ctx):
        text = expr.as_string()
        host = ctx.host
        if text.startswith("&"):
            scope, name = split_scope(text[1:])
            return vim_bool(host.get_option(name, scope) is not None)
        if text.startswith("$"):
            return vim_bool(host.get_env(text[1:]) is not None)
        if text.startswith("*"):
            scope, name = split_scope(text[1:])
            return vim_bool(self.evaluator.functions.get_handler_or_none(scope, name, ctx) is not None)
        scope, name = split_scope(text)
        return vim_bool(self.evaluator.variables.exists(scope, name, ctx))

    # --- Host ---

    def _line(self, expr, *, ctx):
        host = ctx.host
        match expr.as_string():
            case ".":
                return VimInt(host.current_line())
            case "$" | "w$":
                return VimInt(host.line_count())
            case "w0":
                return VimInt(1 if host.line_count() else 0)
        return VimInt(0)

    def _col(self, expr, *, ctx):
        host = ctx.host
        match expr.as_string():
            case ".":
                return VimInt(host.current_column())
            case "$":
                return VimInt(len(host.line_text(host.current_line())) + 1)
        return VimInt(0)

    async def _input(self, prompt=None, text=None, *, ctx):
        result = ctx.host.input(
            prompt.as_string() if prompt is not None else "",
            text.as_string() if text is not None else "",
        )
        if inspect.isawaitable(result):
            result = await result
        return VimString(result or "")
