"""
Stand-in classes.

A stand-in is the object one realm sees in place of a value from the other
realm. It has no state of its own beyond its trap set: every Python protocol
it supports is translated into a trap call.

    attribute / item access      get, set, deleteProperty (one property space)
    `in`                         has (element membership for arrays)
    iter(), len()                ownKeys, or the "length" property for arrays
    dir()                        ownKeys
    calling                      apply, or construct when the original is a class
    repr()                       own keys and get for mappings and arrays

Other iterables (sets, views, generators) answer iter(), len() and `in`
through the original's own protocol methods, under the policy of each
method. Names of the form `__x__` are resolved on the stand-in itself and
never reach a trap. Writes that the policy denies are dropped silently; the
denial is reported through the policy's violation channel.
"""

import reprlib
from typing import Any

from sandtrap.membrane.realm import Kind
from sandtrap.membrane.reflect import ABSENT, VALUE_KEY, handler_of, is_dunder

# Dunder names a stand-in refuses to give out
_HIDDEN = frozenset({"__dict__"})


class StandIn:
    """Base stand-in: a plain object."""

    kind = Kind.OBJECT

    @classmethod
    def create(cls, handler: Any) -> "StandIn":
        """Make a stand-in driven by a trap set."""
        self = cls.__new__(cls)
        object.__setattr__(self, "_standin_handler", handler)
        return self

    # -------------------------------------------------------------------------
    # Attributes and items
    # -------------------------------------------------------------------------

    def __getattribute__(self, name: str) -> Any:
        if is_dunder(name):
            if name in _HIDDEN:
                raise AttributeError(name)
            return object.__getattribute__(self, name)
        value = handler_of(self).get(name, self)
        if value is ABSENT:
            raise AttributeError(name)
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        if is_dunder(name):
            raise AttributeError(f"cannot set {name} on a stand-in")
        handler_of(self).set(name, value, self)

    def __delattr__(self, name: str) -> None:
        if is_dunder(name):
            raise AttributeError(f"cannot delete {name} on a stand-in")
        handler_of(self).delete_property(name)

    def __getitem__(self, key: Any) -> Any:
        value = handler_of(self).get(key, self)
        if value is ABSENT:
            raise KeyError(key)
        return value

    def __setitem__(self, key: Any, value: Any) -> None:
        handler_of(self).set(key, value, self)

    def __delitem__(self, key: Any) -> None:
        handler_of(self).delete_property(key)

    def __contains__(self, key: Any) -> bool:
        handler = handler_of(self)
        if handler.iterable:
            found = handler.invoke("__contains__", self, key)
            if found is ABSENT:
                return any(value is key or value == key for value in self)
            return bool(found)
        return handler.has(key)

    # -------------------------------------------------------------------------
    # Enumeration
    # -------------------------------------------------------------------------

    def __iter__(self) -> Any:
        handler = handler_of(self)
        if handler.iterable:
            return handler.iterate(self)
        return iter(handler.enumerable_keys())

    def __len__(self) -> int:
        handler = handler_of(self)
        if handler.iterable:
            length = handler.invoke("__len__", self)
            if not isinstance(length, int):
                # TypeError lets list() and friends fall back to iterating
                raise TypeError(f"{type(self).kind.value} stand-in has no len()")
            return length
        return len(handler.enumerable_keys())

    def __bool__(self) -> bool:
        handler = handler_of(self)
        if handler.mapping:
            return bool(handler.enumerable_keys())
        if handler.iterable:
            length = handler.invoke("__len__", self)
            return not isinstance(length, int) or length > 0
        return True

    def __dir__(self) -> list[str]:
        return [str(key) for key in handler_of(self).own_keys()]

    def __repr__(self) -> str:
        handler = handler_of(self)
        return f"<{type(self).kind.value} stand-in {handler.path!r}>"


class ObjectStandIn(StandIn):
    """Stand-in for a plain object or mapping."""

    @reprlib.recursive_repr("{...}")
    def __repr__(self) -> str:
        handler = handler_of(self)
        if handler.mapping:
            items = [f"{key!r}: {handler.get(key, self)!r}" for key in handler.enumerable_keys()]
            return "{" + ", ".join(items) + "}"

        text = handler.invoke("__repr__", self)
        if isinstance(text, str):
            return text
        return super().__repr__()


class FunctionStandIn(StandIn):
    """Stand-in for a function or class."""

    kind = Kind.FUNCTION

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return handler_of(self).call(args, kwargs)


class ArrayStandIn(StandIn):
    """Stand-in for a sequence (list, tuple, ...)."""

    kind = Kind.ARRAY

    def __len__(self) -> int:
        length = handler_of(self).get("length", self)
        if not isinstance(length, int):
            return 0
        return length

    def __getitem__(self, key: Any) -> Any:
        if isinstance(key, slice):
            return [self[index] for index in range(*key.indices(len(self)))]
        if isinstance(key, int) and key < 0:
            key += len(self)
        value = handler_of(self).get(key, self)
        if value is ABSENT:
            raise IndexError(key)
        return value

    def __iter__(self) -> Any:
        handler = handler_of(self)
        for index in range(len(self)):
            value = handler.get(index, self)
            if value is ABSENT:
                return
            yield value

    def __contains__(self, item: Any) -> bool:
        return any(value is item or value == item for value in self)

    def __bool__(self) -> bool:
        return len(self) > 0

    @reprlib.recursive_repr("[...]")
    def __repr__(self) -> str:
        items = [repr(value) for value in self]
        if isinstance(handler_of(self).entity, tuple):
            if len(items) == 1:
                return f"({items[0]},)"
            return "(" + ", ".join(items) + ")"
        return "[" + ", ".join(items) + "]"


def _wrapped_value(standin: StandIn) -> Any:
    value = handler_of(standin).get(VALUE_KEY, standin)
    if value is ABSENT:
        return None
    return value


class WrapperStandIn(StandIn):
    """Stand-in for a primitive subclass instance (e.g. an IntEnum member)."""

    kind = Kind.WRAPPER

    def __str__(self) -> str:
        return str(_wrapped_value(self))

    def __int__(self) -> int:
        return int(_wrapped_value(self))

    def __float__(self) -> float:
        return float(_wrapped_value(self))

    def __index__(self) -> int:
        return _wrapped_value(self).__index__()

    def __bool__(self) -> bool:
        return bool(_wrapped_value(self))

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, WrapperStandIn):
            other = _wrapped_value(other)
        return _wrapped_value(self) == other

    def __hash__(self) -> int:
        return hash(_wrapped_value(self))

    def __lt__(self, other: Any) -> bool:
        if isinstance(other, WrapperStandIn):
            other = _wrapped_value(other)
        return _wrapped_value(self) < other

    def __gt__(self, other: Any) -> bool:
        if isinstance(other, WrapperStandIn):
            other = _wrapped_value(other)
        return _wrapped_value(self) > other


class DateStandIn(StandIn):
    """Stand-in for a date, time or datetime."""

    kind = Kind.DATE

    def __str__(self) -> str:
        isoformat = handler_of(self).get("isoformat", self)
        if isoformat is ABSENT:
            return repr(self)
        return str(isoformat())


class ErrorStandIn(StandIn, Exception):
    """Stand-in for an exception. Can be raised and caught as an Exception."""

    kind = Kind.ERROR

    def __str__(self) -> str:
        args = handler_of(self).get("args", self)
        if args is ABSENT or args is None:
            return ""
        values = list(args)
        if len(values) == 1:
            return str(values[0])
        return str(tuple(values))


STANDIN_CLASSES: dict[Kind, type[StandIn]] = {
    Kind.OBJECT: ObjectStandIn,
    Kind.FUNCTION: FunctionStandIn,
    Kind.ARRAY: ArrayStandIn,
    Kind.WRAPPER: WrapperStandIn,
    Kind.DATE: DateStandIn,
    Kind.ERROR: ErrorStandIn,
}
