"""
Operator semantics over the value model.

Every function here takes already-evaluated operands; short-circuiting
(`&&`, `||`, `??`, `?:`) is the evaluator's job.
"""
import math
from typing import Callable, Optional

from viml.viml_datatypes import (
    VimDataType, VimInt, VimFloat, VimString, VimList, VimDictionary, VimFuncref, VimBlob, vim_bool,
)
from viml.viml_errors import vim_error


VIM_NUMBER_MAX = 0x7FFFFFFFFFFFFFFF
VIM_NUMBER_MIN = -0x8000000000000000

ARITHMETIC_OPERATORS = ("+", "-", "*", "/", "%", ".", "..")
LOGICAL_OPERATORS = ("&&", "||")
_COMPARISONS = ("==", "!=", ">", ">=", "<", "<=", "=~", "!~", "is", "isnot")
COMPARISON_OPERATORS = tuple(op + suffix for op in _COMPARISONS for suffix in ("", "#", "?"))
BINARY_OPERATORS = ARITHMETIC_OPERATORS + LOGICAL_OPERATORS + COMPARISON_OPERATORS
UNARY_OPERATORS = ("!", "-", "+")

Matcher = Callable[[str, str], bool]


def wrap_number(n: int) -> int:
    """Two's complement wrap into Vim's 64-bit Number range."""
    n &= 0xFFFFFFFFFFFFFFFF
    return n - 0x10000000000000000 if n > VIM_NUMBER_MAX else n


def _is_float(*values: VimDataType) -> bool:
    return any(isinstance(v, VimFloat) for v in values)


# =================================================================
# Arithmetic
# =================================================================

def add(left: VimDataType, right: VimDataType) -> VimDataType:
    if isinstance(left, VimList) and isinstance(right, VimList):
        return VimList(left.values + right.values)
    if isinstance(left, VimBlob) and isinstance(right, VimBlob):
        return VimBlob(bytes(left.data + right.data))
    if _is_float(left, right):
        return VimFloat(left.as_double() + right.as_double())
    return VimInt(wrap_number(left.to_vim_number().value + right.to_vim_number().value))


def subtract(left: VimDataType, right: VimDataType) -> VimDataType:
    if _is_float(left, right):
        return VimFloat(left.as_double() - right.as_double())
    return VimInt(wrap_number(left.to_vim_number().value - right.to_vim_number().value))


def multiply(left: VimDataType, right: VimDataType) -> VimDataType:
    if _is_float(left, right):
        return VimFloat(left.as_double() * right.as_double())
    return VimInt(wrap_number(left.to_vim_number().value * right.to_vim_number().value))


def divide(left: VimDataType, right: VimDataType) -> VimDataType:
    if _is_float(left, right):
        a, b = left.as_double(), right.as_double()
        if b == 0.0:
            if a == 0.0 or math.isnan(a):
                return VimFloat(math.nan)
            return VimFloat(math.copysign(math.inf, a) * math.copysign(1.0, b))
        return VimFloat(a / b)
    a, b = left.to_vim_number().value, right.to_vim_number().value
    if b == 0:
        if a == 0:
            return VimInt(VIM_NUMBER_MIN)
        return VimInt(VIM_NUMBER_MAX if a > 0 else -VIM_NUMBER_MAX)
    # C division truncates toward zero
    q = abs(a) // abs(b)
    return VimInt(wrap_number(q if (a >= 0) == (b >= 0) else -q))


def modulo(left: VimDataType, right: VimDataType) -> VimDataType:
    if _is_float(left, right):
        raise vim_error("E804")
    a, b = left.to_vim_number().value, right.to_vim_number().value
    if b == 0:
        return VimInt(0)
    # C remainder takes the sign of the dividend
    r = abs(a) % abs(b)
    return VimInt(r if a >= 0 else -r)


def concatenate(left: VimDataType, right: VimDataType) -> VimString:
    return VimString(left.as_string() + right.as_string())


_ARITHMETIC = {
    "+": add,
    "-": subtract,
    "*": multiply,
    "/": divide,
    "%": modulo,
    ".": concatenate,
    "..": concatenate,
}


def arithmetic(op: str, left: VimDataType, right: VimDataType) -> VimDataType:
    func = _ARITHMETIC.get(op)
    if func is None:
        raise ValueError(f"Not an arithmetic operator: '{op}'")
    return func(left, right)


# =================================================================
# Comparison
# =================================================================

def values_equal(left: VimDataType, right: VimDataType, ignore_case: bool = False) -> bool:
    """Strict structural equality used for List items and Dictionary entries: kinds must match."""
    if isinstance(left, VimInt) and isinstance(right, VimFloat) or isinstance(left, VimFloat) and isinstance(right, VimInt):
        return left.as_double() == right.as_double()
    if type(left) is not type(right):
        return False
    match left:
        case VimString():
            if ignore_case:
                return left.value.lower() == right.value.lower()
            return left.value == right.value
        case VimInt() | VimFloat():
            return left.value == right.value
        case VimList():
            if left is right:
                return True
            return len(left) == len(right) and all(
                values_equal(a, b, ignore_case) for a, b in zip(left.values, right.values)
            )
        case VimDictionary():
            if left is right:
                return True
            if left.dictionary.keys() != right.dictionary.keys():
                return False
            return all(values_equal(v, right.dictionary[k], ignore_case) for k, v in left.dictionary.items())
        case VimFuncref():
            return (
                left.handler is right.handler
                and values_equal(left.arguments, right.arguments, ignore_case)
                and left.dictionary is right.dictionary
            )
        case VimBlob():
            return left.data == right.data
    return False


def _split_comparison(op: str):
    if op.endswith("#"):
        return op[:-1], False
    if op.endswith("?"):
        return op[:-1], True
    return op, False


def _identical(left: VimDataType, right: VimDataType, ignore_case: bool) -> bool:
    if isinstance(left, (VimList, VimDictionary, VimBlob)) or isinstance(right, (VimList, VimDictionary, VimBlob)):
        return left is right
    if type(left) is not type(right):
        return False
    return values_equal(left, right, ignore_case)


def _ordered(base: str, cmp: int) -> bool:
    match base:
        case "==":
            return cmp == 0
        case "!=":
            return cmp != 0
        case ">":
            return cmp > 0
        case ">=":
            return cmp >= 0
        case "<":
            return cmp < 0
        case "<=":
            return cmp <= 0
    raise ValueError(f"Not a comparison operator: '{base}'")


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare(op: str, left: VimDataType, right: VimDataType, matcher: Optional[Matcher] = None) -> VimInt:
    base, ignore_case = _split_comparison(op)

    if base in ("is", "isnot"):
        same = _identical(left, right, ignore_case)
        return vim_bool(same if base == "is" else not same)

    if base in ("=~", "!~"):
        if matcher is None:
            raise ValueError("Pattern matching requires a matcher")
        pattern = right.as_string()
        if ignore_case:
            pattern = "\\c" + pattern
        matched = bool(matcher(pattern, left.as_string()))
        return vim_bool(matched if base == "=~" else not matched)

    if isinstance(left, VimList) or isinstance(right, VimList):
        if not (isinstance(left, VimList) and isinstance(right, VimList)):
            raise vim_error("E691")
        if base not in ("==", "!="):
            raise vim_error("E692")
        equal = values_equal(left, right, ignore_case)
        return vim_bool(equal if base == "==" else not equal)

    if isinstance(left, VimDictionary) or isinstance(right, VimDictionary):
        if not (isinstance(left, VimDictionary) and isinstance(right, VimDictionary)):
            raise vim_error("E735")
        if base not in ("==", "!="):
            raise vim_error("E736")
        equal = values_equal(left, right, ignore_case)
        return vim_bool(equal if base == "==" else not equal)

    if isinstance(left, VimFuncref) or isinstance(right, VimFuncref):
        if base not in ("==", "!="):
            raise vim_error("E694")
        equal = isinstance(left, VimFuncref) and isinstance(right, VimFuncref) and values_equal(left, right)
        return vim_bool(equal if base == "==" else not equal)

    if _is_float(left, right):
        return vim_bool(_ordered(base, _cmp(left.as_double(), right.as_double())))

    if isinstance(left, VimString) and isinstance(right, VimString):
        a, b = left.value, right.value
        if ignore_case:
            a, b = a.lower(), b.lower()
        return vim_bool(_ordered(base, _cmp(a, b)))

    return vim_bool(_ordered(base, _cmp(left.to_vim_number().value, right.to_vim_number().value)))


def binary(op: str, left: VimDataType, right: VimDataType, matcher: Optional[Matcher] = None) -> VimDataType:
    """Applies a non-short-circuit binary operator."""
    if op in ARITHMETIC_OPERATORS:
        return arithmetic(op, left, right)
    if op in COMPARISON_OPERATORS:
        return compare(op, left, right, matcher)
    if op in LOGICAL_OPERATORS:
        flag = left.as_boolean() and right.as_boolean() if op == "&&" else left.as_boolean() or right.as_boolean()
        return vim_bool(flag)
    raise ValueError(f"Unknown binary operator '{op}'")


# =================================================================
# Unary and truthiness
# =================================================================

def unary(op: str, operand: VimDataType) -> VimDataType:
    match op:
        case "!":
            return vim_bool(not operand.as_boolean())
        case "-":
            if isinstance(operand, VimFloat):
                return VimFloat(-operand.value)
            return VimInt(wrap_number(-operand.to_vim_number().value))
        case "+":
            if isinstance(operand, VimFloat):
                return operand
            return operand.to_vim_number()
    raise ValueError(f"Unknown unary operator '{op}'")


def is_falsy(value: VimDataType) -> bool:
    """Truthiness for `??`: empty containers are falsy, a Funcref never is."""
    match value:
        case VimList() | VimDictionary() | VimBlob():
            return len(value) == 0
        case VimFuncref():
            return False
    return not value.as_boolean()


# =================================================================
# Indexing and slicing
# =================================================================

def index_value(target: VimDataType, index: VimDataType) -> VimDataType:
    """`target[index]`."""
    match target:
        case VimDictionary():
            key = index.as_string()
            value = target.get(key)
            if value is None:
                raise vim_error("E716", key)
            if isinstance(value, VimFuncref) and not value.is_self_fixed:
                value = value.copy()
                value.dictionary = target
            return value
        case VimList():
            i = index.to_vim_number().value
            idx = i + len(target) if i < 0 else i
            if idx < 0 or idx >= len(target):
                raise vim_error("E684", i)
            return target.values[idx]
        case VimBlob():
            i = index.to_vim_number().value
            idx = i + len(target) if i < 0 else i
            if idx < 0 or idx >= len(target):
                raise vim_error("E979", i)
            return VimInt(target.data[idx])
        case VimFloat():
            raise vim_error("E806")
        case VimFuncref():
            raise vim_error("E695")
    text = target.as_string()
    i = index.to_vim_number().value
    if 0 <= i < len(text):
        return VimString(text[i])
    return VimString("")


def _slice_bounds(length: int, start: Optional[VimDataType], end: Optional[VimDataType]):
    first = start.to_vim_number().value if start is not None else 0
    last = end.to_vim_number().value if end is not None else length - 1
    if first < 0:
        first = max(first + length, 0)
    if last < 0:
        last += length
    last = min(last, length - 1)
    return first, last


def slice_value(target: VimDataType, start: Optional[VimDataType], end: Optional[VimDataType]) -> VimDataType:
    """`target[start:end]`, both ends inclusive."""
    match target:
        case VimList():
            first, last = _slice_bounds(len(target), start, end)
            return VimList(target.values[first:last + 1] if first <= last else [])
        case VimBlob():
            first, last = _slice_bounds(len(target), start, end)
            return VimBlob(bytes(target.data[first:last + 1]) if first <= last else b"")
        case VimDictionary():
            raise vim_error("E719")
        case VimFloat():
            raise vim_error("E806")
        case VimFuncref():
            raise vim_error("E695")
    text = target.as_string()
    first, last = _slice_bounds(len(text), start, end)
    return VimString(text[first:last + 1] if first <= last else "")
