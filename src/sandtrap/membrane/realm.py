"""
Realms and value classification.

A realm is one side of the membrane. The host realm is the embedding
program; the guest realm is the namespace guest code runs in. Each realm
carries its primordials: the type tables used to decide what kind of value
an entity is. Classification always uses the table of the realm the value
comes from.
"""

import builtins
import datetime
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Values of these exact types cross the membrane unchanged
PRIMITIVE_TYPES: tuple[type, ...] = (
    type(None),
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    type(Ellipsis),
    type(NotImplemented),
)

# Bases whose subclass instances are wrapped primitives
WRAPPER_BASES: tuple[type, ...] = (int, float, complex, str, bytes)

# Builtins handed to guest code
GUEST_BUILTINS: tuple[str, ...] = (
    "__build_class__",
    "abs",
    "all",
    "any",
    "ascii",
    "bin",
    "bool",
    "bytes",
    "callable",
    "chr",
    "complex",
    "dict",
    "dir",
    "divmod",
    "enumerate",
    "filter",
    "float",
    "format",
    "frozenset",
    "hasattr",
    "hash",
    "hex",
    "id",
    "int",
    "isinstance",
    "issubclass",
    "iter",
    "len",
    "list",
    "map",
    "max",
    "min",
    "next",
    "oct",
    "ord",
    "pow",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "slice",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "ArithmeticError",
    "AssertionError",
    "AttributeError",
    "Exception",
    "IndexError",
    "KeyError",
    "LookupError",
    "NotImplementedError",
    "RuntimeError",
    "StopIteration",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)


class Kind(str, Enum):
    """Fixed set of stand-in kinds."""

    FUNCTION = "function"
    WRAPPER = "wrapper"
    ARRAY = "array"
    DATE = "date"
    ERROR = "error"
    OBJECT = "object"


def primitive_value(value: Any) -> Any:
    """
    The plain primitive inside a wrapped primitive, or None.

    Example:
        >>> import enum
        >>> class Color(enum.IntEnum):
        ...     RED = 1
        >>> primitive_value(Color.RED)
        1
    """
    for base in WRAPPER_BASES:
        if isinstance(value, base) and type(value) is not base:
            if base is str:
                return str.__str__(value)
            return base(value)
    return None


def is_sequence(value: Any) -> bool:
    """Whether a value is array-like (a sequence that is not text or bytes)."""
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


@dataclass
class Realm:
    """
    One side of the membrane.

    Attributes:
        name: "host" or "guest"
        primitives: Exact types that cross unchanged
        dates: Types classified as dates
        errors: Types classified as errors
        builtins: The builtins table of the realm's namespace
    """

    name: str
    primitives: tuple[type, ...] = PRIMITIVE_TYPES
    dates: tuple[type, ...] = (datetime.date, datetime.time)
    errors: tuple[type, ...] = (BaseException,)
    builtins: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def host(cls) -> "Realm":
        return cls(name="host", builtins=dict(vars(builtins)))

    @classmethod
    def guest(cls, names: tuple[str, ...] = GUEST_BUILTINS) -> "Realm":
        return cls(name="guest", builtins={name: getattr(builtins, name) for name in names})

    def is_primitive(self, value: Any) -> bool:
        return type(value) in self.primitives

    def classify(self, value: Any) -> Kind:
        """Pick the stand-in kind for a non-primitive value."""
        if isinstance(value, self.errors):
            return Kind.ERROR
        if isinstance(value, type) or callable(value):
            return Kind.FUNCTION
        if primitive_value(value) is not None:
            return Kind.WRAPPER
        if isinstance(value, self.dates):
            return Kind.DATE
        if is_sequence(value):
            return Kind.ARRAY
        return Kind.OBJECT

    def namespace(self, **values: Any) -> dict[str, Any]:
        """A fresh module namespace for code running in this realm."""
        namespace: dict[str, Any] = {
            "__builtins__": dict(self.builtins),
            "__name__": f"<{self.name}>",
        }
        namespace.update(values)
        return namespace
