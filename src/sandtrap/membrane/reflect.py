"""
Fundamental object operations.

The membrane is written against one small set of operations (own keys,
own property descriptors, prototypes, get/set/has/delete, apply and
construct). This module implements them for three kinds of targets:

    - stand-ins: the operation is dispatched to the stand-in's traps
    - shadows: the backing store of a stand-in, with ordinary dictionary
      semantics and an explicit prototype
    - plain Python objects, mapped as follows:
        Mapping      own keys are its keys
        Sequence     own keys are its indices plus non-enumerable "length"
        class        own keys are its class __dict__ entries
        instance     own keys are its instance __dict__ entries
        wrapper      a primitive subclass instance also has "__value__"

      The prototype of an instance is its type, the prototype of a class is
      the next class in its MRO, and object has none.

Class dict entries become descriptors: properties and getset/member
descriptors become accessors; functions and method descriptors become data
descriptors flagged `method`, which get() binds to the receiver with
bind(); static and class methods are unwrapped.
"""

import functools
import types
from collections.abc import Mapping, MutableMapping, MutableSequence
from dataclasses import dataclass, replace
from typing import Any

from sandtrap.membrane.realm import Kind, is_sequence, primitive_value

# Key of the synthetic prototype property used by policies
PROTO_KEY = "__proto__"

# Key of the plain primitive inside a wrapped primitive
VALUE_KEY = "__value__"

LENGTH_KEY = "length"

_METHOD_TYPES = (
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodDescriptorType,
    types.WrapperDescriptorType,
)

_SLOT_TYPES = (
    types.GetSetDescriptorType,
    types.MemberDescriptorType,
)


class _Absent:
    """Marker for a property that is not there."""

    _instance = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


@dataclass
class Descriptor:
    """
    A property descriptor.

    A descriptor with a getter or setter is an accessor; otherwise it is a
    data descriptor holding `value`.
    """

    value: Any = None
    get: Any = None
    set: Any = None
    writable: bool = True
    enumerable: bool = True
    configurable: bool = True
    method: bool = False

    @property
    def is_accessor(self) -> bool:
        return self.get is not None or self.set is not None


class Shadow:
    """
    Backing store of a stand-in.

    Holds the mirrored (or realm-local) descriptors and prototype, in the
    stand-in's realm.
    """

    __slots__ = ("kind", "props", "proto")

    def __init__(self, kind: Kind) -> None:
        self.kind = kind
        self.props: dict[Any, Descriptor] = {}
        self.proto: Any = None

    def __repr__(self) -> str:
        return f"Shadow(kind={self.kind.value}, keys={list(self.props)!r})"


def is_dunder(name: Any) -> bool:
    return isinstance(name, str) and len(name) > 4 and name.startswith("__") and name.endswith("__")


def handler_of(value: Any) -> Any:
    """The trap set of a stand-in, or None for anything else."""
    from sandtrap.membrane.standin import StandIn

    if isinstance(value, StandIn):
        return object.__getattribute__(value, "_standin_handler")
    return None


def is_class_like(value: Any) -> bool:
    """Whether a value is a class, or a stand-in for one."""
    handler = handler_of(value)
    if handler is not None:
        return isinstance(handler.entity, type)
    return isinstance(value, type)


def _index(target: Any, key: Any) -> int | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, str) and key.isdigit():
        key = int(key)
    if isinstance(key, int) and 0 <= key < len(target):
        return key
    return None


def _instance_dict(target: Any) -> dict[str, Any] | None:
    try:
        return object.__getattribute__(target, "__dict__")
    except (AttributeError, TypeError):
        return None


# =============================================================================
# Class Dict Entries
# =============================================================================


@functools.lru_cache(maxsize=None)
def _slot_accessors(raw: Any) -> tuple[Any, Any]:
    """Getter and setter functions for a getset/member descriptor."""

    def getter(receiver: Any) -> Any:
        return raw.__get__(receiver, type(receiver))

    def setter(receiver: Any, value: Any) -> None:
        raw.__set__(receiver, value)

    getter.__name__ = f"get_{raw.__name__}"
    setter.__name__ = f"set_{raw.__name__}"
    return getter, setter


def _class_entry(cls: type, raw: Any) -> Descriptor:
    if isinstance(raw, property):
        return Descriptor(get=raw.fget, set=raw.fset, enumerable=False)
    if isinstance(raw, _SLOT_TYPES):
        getter, setter = _slot_accessors(raw)
        return Descriptor(get=getter, set=setter, enumerable=False)
    if isinstance(raw, staticmethod):
        return Descriptor(value=raw.__func__, enumerable=False)
    if isinstance(raw, (classmethod, types.ClassMethodDescriptorType)):
        return Descriptor(value=raw.__get__(None, cls), enumerable=False)
    if isinstance(raw, _METHOD_TYPES):
        return Descriptor(value=raw, enumerable=False, method=True)
    return Descriptor(value=raw)


# =============================================================================
# Own Properties
# =============================================================================


def get_own_property_descriptor(target: Any, key: Any) -> Descriptor | None:
    """Own descriptor of target for key, or None."""
    handler = handler_of(target)
    if handler is not None:
        return handler.get_own_property_descriptor(key)
    if isinstance(target, Shadow):
        return target.props.get(key)

    if key == VALUE_KEY:
        value = primitive_value(target)
        if value is not None:
            return Descriptor(value=value, writable=False, enumerable=False)

    if isinstance(target, Mapping):
        if key in target:
            return Descriptor(value=target[key], writable=isinstance(target, MutableMapping))
        return None

    if is_sequence(target):
        if key == LENGTH_KEY:
            return Descriptor(value=len(target), writable=False, enumerable=False)
        index = _index(target, key)
        if index is None:
            return None
        return Descriptor(value=target[index], writable=isinstance(target, MutableSequence))

    if not isinstance(key, str) or is_dunder(key):
        return None

    if isinstance(target, type):
        entries = vars(target)
        if key in entries:
            return _class_entry(target, entries[key])
        return None

    entries = _instance_dict(target)
    if entries is not None and key in entries:
        return Descriptor(value=entries[key])
    return None


def own_keys(target: Any) -> list[Any]:
    """Own keys of target, in order."""
    handler = handler_of(target)
    if handler is not None:
        return handler.own_keys()
    if isinstance(target, Shadow):
        return list(target.props)
    if isinstance(target, Mapping):
        return list(target.keys())
    if is_sequence(target):
        return [*range(len(target)), LENGTH_KEY]
    if isinstance(target, type):
        entries = vars(target)
    else:
        entries = _instance_dict(target) or {}
    return [key for key in entries if isinstance(key, str) and not is_dunder(key)]


def define_property(target: Any, key: Any, desc: Descriptor) -> bool:
    """Define (or redefine) an own property."""
    handler = handler_of(target)
    if handler is not None:
        return handler.define_property(key, desc)
    if isinstance(target, Shadow):
        target.props[key] = desc
        return True

    if isinstance(target, Mapping):
        if desc.is_accessor or not isinstance(target, MutableMapping):
            return False
        target[key] = desc.value
        return True

    if is_sequence(target):
        if desc.is_accessor or not isinstance(target, MutableSequence):
            return False
        index = _index(target, key)
        if index is not None:
            target[index] = desc.value
            return True
        if key == len(target):
            target.append(desc.value)
            return True
        return False

    if not isinstance(key, str) or is_dunder(key):
        return False

    if isinstance(target, type):
        value = property(desc.get, desc.set) if desc.is_accessor else desc.value
        try:
            setattr(target, key, value)
        except (AttributeError, TypeError):
            return False
        return True

    if desc.is_accessor:
        return False
    entries = _instance_dict(target)
    if entries is None:
        return False
    entries[key] = desc.value
    return True


def delete_property(target: Any, key: Any) -> bool:
    """Delete an own property. Deleting a missing key succeeds."""
    handler = handler_of(target)
    if handler is not None:
        return handler.delete_property(key)
    if isinstance(target, Shadow):
        target.props.pop(key, None)
        return True

    if isinstance(target, Mapping):
        if not isinstance(target, MutableMapping):
            return False
        target.pop(key, None)
        return True

    if is_sequence(target):
        index = _index(target, key)
        if index is None:
            return True
        if not isinstance(target, MutableSequence):
            return False
        del target[index]
        return True

    if not isinstance(key, str) or is_dunder(key):
        return False

    if isinstance(target, type):
        if key not in vars(target):
            return True
        try:
            delattr(target, key)
        except (AttributeError, TypeError):
            return False
        return True

    entries = _instance_dict(target)
    if entries is not None:
        entries.pop(key, None)
    return True


# =============================================================================
# Prototypes
# =============================================================================


def get_prototype_of(target: Any) -> Any:
    handler = handler_of(target)
    if handler is not None:
        return handler.get_prototype_of()
    if isinstance(target, Shadow):
        return target.proto
    if isinstance(target, type):
        if target is object:
            return None
        return target.__mro__[1]
    return type(target)


def set_prototype_of(target: Any, proto: Any) -> bool:
    """Replace the prototype. Classes and None prototypes are refused."""
    handler = handler_of(target)
    if handler is not None:
        return handler.set_prototype_of(proto)
    if isinstance(target, Shadow):
        target.proto = proto
        return True
    if isinstance(target, type) or not isinstance(proto, type):
        return False
    try:
        target.__class__ = proto
    except TypeError:
        return False
    return True


# =============================================================================
# Property Access
# =============================================================================


def has(target: Any, key: Any) -> bool:
    """Whether key is reachable from target (own or inherited)."""
    obj = target
    while obj is not None:
        handler = handler_of(obj)
        if handler is not None:
            return handler.has(key)
        if get_own_property_descriptor(obj, key) is not None:
            return True
        obj = get_prototype_of(obj)
    return False


def _lookup(target: Any, key: Any) -> Any:
    """Plain Python lookup: item access for containers, attributes otherwise."""
    desc = get_own_property_descriptor(target, key)
    if desc is not None and not desc.is_accessor:
        return desc.value
    if not isinstance(key, str) or is_dunder(key):
        return ABSENT
    try:
        return getattr(target, key)
    except AttributeError:
        return ABSENT


def get(target: Any, key: Any, receiver: Any = ABSENT) -> Any:
    """
    Read a property, walking the prototype chain.

    Getters are called with the receiver. A `method` descriptor is returned
    bound to the receiver unless the receiver is a class.

    Returns:
        The value, or ABSENT when no such property is reachable
    """
    if receiver is ABSENT:
        receiver = target

    handler = handler_of(target)
    if handler is not None:
        return handler.get(key, receiver)
    if receiver is target and not isinstance(target, Shadow):
        return _lookup(target, key)

    obj = target
    while obj is not None:
        if obj is not target:
            handler = handler_of(obj)
            if handler is not None:
                return handler.get(key, receiver)

        desc = get_own_property_descriptor(obj, key)
        if desc is not None:
            if desc.is_accessor:
                if desc.get is None:
                    return None
                return apply(desc.get, receiver, (), {})
            if desc.method and not is_class_like(receiver):
                return bind(desc.value, receiver)
            return desc.value

        obj = get_prototype_of(obj)

    return ABSENT


def _assign(target: Any, key: Any, value: Any) -> bool:
    """Plain Python assignment: item assignment for containers, setattr otherwise."""
    if isinstance(target, Mapping) or is_sequence(target):
        return define_property(target, key, Descriptor(value=value))
    if not isinstance(key, str) or is_dunder(key):
        return False
    try:
        setattr(target, key, value)
    except (AttributeError, TypeError):
        return False
    return True


def set(target: Any, key: Any, value: Any, receiver: Any = ABSENT) -> bool:
    """
    Write a property.

    Plain objects written as their own receiver use ordinary Python
    assignment. Otherwise the prototype chain is walked: an inherited
    setter is invoked with the receiver, a getter-only accessor refuses the
    write, and anything else defines a data property on the receiver.
    """
    if receiver is ABSENT:
        receiver = target

    handler = handler_of(target)
    if handler is not None:
        return handler.set(key, value, receiver)
    if receiver is target and not isinstance(target, Shadow):
        return _assign(target, key, value)

    desc = get_own_property_descriptor(target, key)
    if desc is None:
        parent = get_prototype_of(target)
        if parent is not None:
            return set(parent, key, value, receiver)
        desc = Descriptor()

    if desc.is_accessor:
        if desc.set is None:
            return False
        apply(desc.set, receiver, (value,), {})
        return True
    if not desc.writable:
        return False

    existing = get_own_property_descriptor(receiver, key)
    if existing is not None:
        if existing.is_accessor or not existing.writable:
            return False
        return define_property(receiver, key, replace(existing, value=value))
    return define_property(receiver, key, Descriptor(value=value))


# =============================================================================
# Calls
# =============================================================================


def apply(fn: Any, this: Any, args: tuple[Any, ...] | list[Any], kwargs: dict[str, Any]) -> Any:
    """Call fn, passing `this` as the first argument when there is one."""
    handler = handler_of(fn)
    if handler is not None:
        return handler.apply(this, tuple(args), dict(kwargs))
    if this is None:
        return fn(*args, **kwargs)
    return fn(this, *args, **kwargs)


def bind(fn: Any, receiver: Any) -> Any:
    """
    Bind a method to its receiver.

    A stand-in is bound by its own traps, so the result is again a stand-in
    whose calls pass the receiver as `this`. Anything else becomes an
    ordinary bound method.
    """
    handler = handler_of(fn)
    if handler is not None:
        return handler.bind(receiver)
    return types.MethodType(fn, receiver)


def construct(cls: Any, args: tuple[Any, ...] | list[Any], kwargs: dict[str, Any]) -> Any:
    handler = handler_of(cls)
    if handler is not None:
        return handler.construct(tuple(args), dict(kwargs))
    return cls(*args, **kwargs)
