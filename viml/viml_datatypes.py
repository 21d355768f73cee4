"""
Defines the core value types for the VimL runtime.

The set of value kinds is closed: Number (`VimInt`), Float (`VimFloat`),
String (`VimString`), List (`VimList`), Dictionary (`VimDictionary`),
Funcref (`VimFuncref`) and Blob (`VimBlob`). They share one capability set
(`as_double`, `as_string`, `as_boolean`, `to_vim_number`, `deep_copy`,
`lock_var`, `unlock_var`) and each kind decides which conversions are
legal; illegal ones raise the numbered `VimError` Vim itself reports.

Lists and Dictionaries are reference types: assigning them never copies,
so a mutation made through one variable is visible through every alias.
"""
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Iterable, List, Optional, TYPE_CHECKING

from viml.viml_errors import vim_error

if TYPE_CHECKING:
    from viml.viml_functions import FunctionHandler


# Vim's deepcopy() recursion limit.
DEEP_COPY_LEVEL = 100

_NUMBER_LITERAL = re.compile(r"(-?)(?:0[xX]([0-9a-fA-F]+)|0([0-7]+)|([0-9]+))\Z")
_LEADING_NUMBER = re.compile(r"(-?)(?:0[xX]([0-9a-fA-F]+)|(0[0-9]*)|([1-9][0-9]*))")


def parse_number(text: str) -> Optional[int]:
    """Parses a whole Number literal: decimal, octal (`017`) or hex (`0x1f`), optionally negative.

    Returns None when the text is not a literal.
    """
    m = _NUMBER_LITERAL.match(text)
    if m is None:
        return None
    sign, hex_digits, octal_digits, decimal_digits = m.groups()
    if hex_digits is not None:
        n = int(hex_digits, 16)
    elif octal_digits is not None:
        n = int(octal_digits, 8)
    else:
        n = int(decimal_digits, 10)
    return -n if sign else n


def leading_number(text: str) -> int:
    """Value of the numeric prefix of a String, as used when a String is used as a Number.

    `'12abc'` is 12, `'0x1fz'` is 31, `'017'` is 15, `'019'` is 19 (not octal),
    `'-0x10'` is -16 and text without leading digits is 0.
    """
    m = _LEADING_NUMBER.match(text)
    if m is None:
        return 0
    sign, hex_digits, zero_prefixed, decimal_digits = m.groups()
    if hex_digits is not None:
        n = int(hex_digits, 16)
    elif zero_prefixed is not None:
        if all(c in "01234567" for c in zero_prefixed):
            n = int(zero_prefixed, 8)
        else:
            n = int(zero_prefixed, 10)
    else:
        n = int(decimal_digits, 10)
    return -n if sign else n


# =================================================================
# Abstract Base Class
# =================================================================

class VimDataType(ABC):
    """Base class for every runtime value."""
    type_name = "unknown"
    type_number = -1

    def __init__(self):
        self.is_locked: bool = False

    @abstractmethod
    def as_double(self) -> float:
        raise NotImplementedError

    @abstractmethod
    def as_string(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def to_vim_number(self) -> 'VimInt':
        raise NotImplementedError

    @abstractmethod
    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        raise NotImplementedError

    def as_boolean(self) -> bool:
        return self.as_double() != 0.0

    def to_vim_string(self) -> 'VimString':
        return VimString(self.as_string())

    def lock_var(self, depth: int):
        self.is_locked = True

    def unlock_var(self, depth: int):
        self.is_locked = False


# =================================================================
# Scalars
# =================================================================

class VimInt(VimDataType):
    """A Vim Number."""
    type_name = "number"
    type_number = 0

    def __init__(self, value: int = 0):
        super().__init__()
        self.value = int(value)

    @classmethod
    def from_text(cls, text: str) -> 'VimInt':
        """Number from a decimal/octal/hex literal; text that is not a literal gives 0."""
        n = parse_number(text.strip())
        return cls(n if n is not None else 0)

    def as_double(self) -> float:
        return float(self.value)

    def as_string(self) -> str:
        return str(self.value)

    def to_vim_number(self) -> 'VimInt':
        return self

    def as_boolean(self) -> bool:
        return self.value != 0

    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        if level <= 0:
            return self
        return VimInt(self.value)

    def __eq__(self, other):
        return isinstance(other, VimInt) and self.value == other.value

    def __hash__(self):
        return hash(("number", self.value))

    def __repr__(self) -> str:
        return f"VimInt({self.value})"


class VimFloat(VimDataType):
    """A Vim Float. Never silently converted to a Number or a String."""
    type_name = "float"
    type_number = 5

    def __init__(self, value: float = 0.0):
        super().__init__()
        self.value = float(value)

    def as_double(self) -> float:
        return self.value

    def as_string(self) -> str:
        raise vim_error("E806")

    def to_vim_number(self) -> 'VimInt':
        raise vim_error("E805")

    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        if level <= 0:
            return self
        return VimFloat(self.value)

    def __eq__(self, other):
        return isinstance(other, VimFloat) and self.value == other.value

    def __hash__(self):
        return hash(("float", self.value))

    def __repr__(self) -> str:
        return f"VimFloat({self.value!r})"


class VimString(VimDataType):
    """A Vim String. Used as a Number it yields its numeric prefix and never fails."""
    type_name = "string"
    type_number = 1

    def __init__(self, value: str = ""):
        super().__init__()
        self.value = str(value)

    def as_double(self) -> float:
        return float(leading_number(self.value))

    def as_string(self) -> str:
        return self.value

    def to_vim_number(self) -> 'VimInt':
        return VimInt(leading_number(self.value))

    def to_vim_string(self) -> 'VimString':
        return self

    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        if level <= 0:
            return self
        return VimString(self.value)

    def __eq__(self, other):
        return isinstance(other, VimString) and self.value == other.value

    def __hash__(self):
        return hash(("string", self.value))

    def __repr__(self) -> str:
        return f"VimString({self.value!r})"


# =================================================================
# Containers
# =================================================================

class VimList(VimDataType):
    """A mutable, ordered List. Shared by reference between all its holders."""
    type_name = "list"
    type_number = 3

    def __init__(self, values: Optional[Iterable[VimDataType]] = None):
        super().__init__()
        self.values: List[VimDataType] = list(values) if values is not None else []

    def as_double(self) -> float:
        raise vim_error("E745")

    def as_string(self) -> str:
        raise vim_error("E730")

    def to_vim_number(self) -> 'VimInt':
        raise vim_error("E745")

    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        if level <= 0:
            return self
        if memo is None:
            memo = {}
        if id(self) in memo:
            return memo[id(self)]
        out = memo[id(self)] = VimList()
        out.values = [v.deep_copy(level - 1, memo) for v in self.values]
        return out

    def lock_var(self, depth: int):
        self.is_locked = True
        if depth > 1:
            for v in self.values:
                v.lock_var(depth - 1)

    def unlock_var(self, depth: int):
        self.is_locked = False
        if depth > 1:
            for v in self.values:
                v.unlock_var(depth - 1)

    def __getitem__(self, index):
        return self.values[index]

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self):
        return iter(self.values)

    def __eq__(self, other):
        return isinstance(other, VimList) and self.values == other.values

    __hash__ = None

    def __repr__(self) -> str:
        return f"VimList({self.values!r})"


class VimDictionary(VimDataType):
    """An insertion-ordered mapping from String keys to values, shared by reference.

    Keys are held as plain `str`; lookups accept either `str` or `VimString`.
    """
    type_name = "dict"
    type_number = 4
    # Names locked with `lockvar` while this Dictionary serves as a variable namespace.
    locked_names: frozenset = frozenset()

    def __init__(self, dictionary: Optional[Dict[str, VimDataType]] = None):
        super().__init__()
        self.dictionary: Dict[str, VimDataType] = dict(dictionary) if dictionary is not None else {}

    @staticmethod
    def _key(key) -> str:
        if isinstance(key, VimString):
            return key.value
        return str(key)

    def as_double(self) -> float:
        raise vim_error("E728")

    def as_string(self) -> str:
        raise vim_error("E731")

    def to_vim_number(self) -> 'VimInt':
        raise vim_error("E728")

    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        if level <= 0:
            return self
        if memo is None:
            memo = {}
        if id(self) in memo:
            return memo[id(self)]
        out = memo[id(self)] = VimDictionary()
        out.dictionary = {k: v.deep_copy(level - 1, memo) for k, v in self.dictionary.items()}
        return out

    def lock_var(self, depth: int):
        self.is_locked = True
        if depth > 1:
            for v in self.dictionary.values():
                v.lock_var(depth - 1)

    def unlock_var(self, depth: int):
        self.is_locked = False
        if depth > 1:
            for v in self.dictionary.values():
                v.unlock_var(depth - 1)

    def get(self, key, default: Optional[VimDataType] = None) -> Optional[VimDataType]:
        return self.dictionary.get(self._key(key), default)

    def __getitem__(self, key) -> VimDataType:
        return self.dictionary[self._key(key)]

    def __setitem__(self, key, value: VimDataType):
        self.dictionary[self._key(key)] = value

    def __contains__(self, key) -> bool:
        return self._key(key) in self.dictionary

    def __len__(self) -> int:
        return len(self.dictionary)

    def keys(self):
        return self.dictionary.keys()

    def items(self):
        return self.dictionary.items()

    def __eq__(self, other):
        return isinstance(other, VimDictionary) and self.dictionary == other.dictionary

    __hash__ = None

    def __repr__(self) -> str:
        return f"VimDictionary({self.dictionary!r})"


# =================================================================
# Callables and opaque data
# =================================================================

class FuncrefType(Enum):
    LAMBDA = "lambda"
    FUNCREF = "funcref"
    FUNCTION = "function"


class VimFuncref(VimDataType):
    """A callable value.

    Wraps a function handler together with a partial-application argument
    list and an optional bound dictionary (`self` for dict functions).
    A FUNCTION funcref (made by `function('Name')`) looks its target up by
    name on every call, so redefining `Name` changes what it invokes;
    FUNCREF and LAMBDA funcrefs keep the handler they were created with.
    """
    type_name = "funcref"
    type_number = 2

    def __init__(self, handler: 'FunctionHandler', arguments: Optional[VimList] = None,
                 dictionary: Optional[VimDictionary] = None, type: FuncrefType = FuncrefType.FUNCREF):
        super().__init__()
        self.handler = handler
        self.arguments = arguments if arguments is not None else VimList()
        self.dictionary = dictionary
        self.type = type
        self.is_self_fixed = False

    @property
    def name(self) -> str:
        return self.handler.name

    @property
    def is_deleted(self) -> bool:
        return self.handler.is_deleted

    def as_double(self) -> float:
        raise vim_error("E703")

    def as_string(self) -> str:
        raise vim_error("E729")

    def to_vim_number(self) -> 'VimInt':
        raise vim_error("E703")

    def copy(self) -> 'VimFuncref':
        ref = VimFuncref(self.handler, self.arguments, self.dictionary, self.type)
        ref.is_self_fixed = self.is_self_fixed
        return ref

    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        if level <= 0:
            return self
        return self.copy()

    async def execute(self, args: List[VimDataType], ctx, evaluator, line_range=None) -> VimDataType:
        """Calls the referenced function with the captured arguments prepended to `args`."""
        if self.is_deleted:
            raise vim_error("E933", self.handler.name)
        all_args = list(self.arguments.values) + list(args)
        handler = self.handler
        if self.type is FuncrefType.FUNCTION:
            lookup_ctx = ctx
            if self.handler.scope == 's':
                # resolved in the defining script, like Vim's <SNR> names
                lookup_ctx = ctx.with_script(self.handler.declaration.script)
            handler = evaluator.functions.get_handler_or_none(self.handler.scope, self.handler.name, lookup_ctx)
            if handler is None:
                raise vim_error("E117", self.handler.display_name)
        return await handler.execute(all_args, ctx, evaluator, self_dict=self.dictionary, line_range=line_range)

    def __eq__(self, other):
        return (
            isinstance(other, VimFuncref)
            and self.handler is other.handler
            and self.arguments == other.arguments
            and self.dictionary is other.dictionary
        )

    __hash__ = None

    def __repr__(self) -> str:
        return f"VimFuncref({self.handler.name!r}, type={self.type.value})"


class VimBlob(VimDataType):
    """A byte sequence. Reserved: it converts to nothing and cannot be iterated."""
    type_name = "blob"
    type_number = 10

    def __init__(self, data: bytes = b""):
        super().__init__()
        self.data = bytearray(data)

    def as_double(self) -> float:
        raise vim_error("E974")

    def as_string(self) -> str:
        raise vim_error("E976")

    def to_vim_number(self) -> 'VimInt':
        raise vim_error("E974")

    def deep_copy(self, level: int = DEEP_COPY_LEVEL, memo: Optional[dict] = None) -> 'VimDataType':
        if level <= 0:
            return self
        return VimBlob(bytes(self.data))

    def __len__(self) -> int:
        return len(self.data)

    def __eq__(self, other):
        return isinstance(other, VimBlob) and self.data == other.data

    __hash__ = None

    def __repr__(self) -> str:
        return f"VimBlob({bytes(self.data)!r})"


def vim_bool(flag: bool) -> VimInt:
    """Vim has no boolean type; comparisons yield the Numbers 1 and 0."""
    return VimInt(1 if flag else 0)
