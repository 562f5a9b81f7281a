"""
Trap set for one stand-in.

An Interceptor is closed over the original value, its path, its policy node
and the direction of the membrane that built it. Values read from the
original are translated in that direction; values written into the original
are translated in the other one.

Mirroring:
    Before answering, a trap copies the original's descriptor for the key
    (and, when needed, its prototype) onto the stand-in's shadow, gated by
    the read policy. A denied or missing property is removed from the
    shadow, so it is absent for that attempt. Keys defined locally after a
    denied write are never mirrored again, and neither is a prototype set
    locally after a denied write.

Protocols:
    Iterables that are neither mappings nor sequences (sets, views,
    generators) are iterated, sized and searched through the original's own
    __iter__, __len__ and __contains__. Each is read and called under the
    policy at path/__iter__ (and so on), like any other method.

Exceptions:
    Exceptions raised by the original are translated in the reading
    direction and re-raised without their foreign context. SandTrapError
    passes through untranslated, and StopIteration crosses as a fresh
    StopIteration without its value.
"""

import logging
import types
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from sandtrap.errors import SandTrapError
from sandtrap.membrane import reflect
from sandtrap.membrane.realm import is_sequence
from sandtrap.membrane.reflect import ABSENT, PROTO_KEY, Descriptor, Shadow
from sandtrap.membrane.standin import STANDIN_CLASSES
from sandtrap.policy import EntityPolicy
from sandtrap.schema import Role

if TYPE_CHECKING:
    from sandtrap.membrane.core import Membrane

logger = logging.getLogger(__name__)


class Interceptor:
    """
    The traps of one stand-in.

    Attributes:
        membrane: The membrane that built the stand-in
        entity: The original value
        shadow: The stand-in's backing store
        policy: The entity policy governing the original
        path: Path of the original
        role: Direction of the membrane that built the stand-in
        local_keys: Keys defined locally after a denied write
        local_proto: Whether the prototype was set locally after a denied write
        receiver: The bound receiver, for a method read from an object
    """

    def __init__(
        self,
        membrane: "Membrane",
        entity: Any,
        shadow: Shadow,
        policy: EntityPolicy,
        path: str,
        role: Role,
    ) -> None:
        self.membrane = membrane
        self.entity = entity
        self.shadow = shadow
        self.policy = policy
        self.path = path
        self.role = role
        self.mapping = isinstance(entity, Mapping)
        self.iterable = not self.mapping and not is_sequence(entity) and isinstance(entity, Iterable)
        self.local_keys: set[Any] = set()
        self.local_proto = False
        self.receiver: Any = None

    def __repr__(self) -> str:
        return f"Interceptor(path={self.path!r}, role={self.role.value}, kind={self.shadow.kind.value})"

    # =========================================================================
    # Translation
    # =========================================================================

    def _read(self, value: Any, path: str, policy: EntityPolicy) -> Any:
        """Translate a value coming out of the original."""
        return self.membrane.transform(self.role, value, path, policy)

    def _write(self, value: Any, path: str, policy: EntityPolicy) -> Any:
        """Translate a value going into the original."""
        return self.membrane.transform(self.role.opposite, value, path, policy)

    def _key_path(self, key: Any) -> str:
        return f"{self.path}/{key}"

    def _forward(self, error_policy: Callable[[], EntityPolicy], operation: Callable[..., Any], *args: Any) -> Any:
        """Run an operation on the original, translating what it raises."""
        error = None
        try:
            return operation(*args)
        except SandTrapError:
            raise
        except StopIteration:
            raise StopIteration from None
        except Exception as e:
            error = e

        logger.debug("%s raised %s on path %s", self.role.value, type(error).__name__, self.path)
        raise self._read(error, self.path, error_policy()) from None

    def _property_errors(self, key: Any) -> Callable[[], EntityPolicy]:
        return lambda: self.policy.get_property(key).read_policy

    # =========================================================================
    # Mirroring
    # =========================================================================

    def _sync_property(self, key: Any) -> None:
        if key in self.local_keys:
            return

        props = self.shadow.props
        desc = self._forward(
            self._property_errors(key), reflect.get_own_property_descriptor, self.entity, key
        )
        if desc is None:
            props.pop(key, None)
            return

        prop = self.policy.get_property(key)
        if not prop.read:
            props.pop(key, None)
            return

        props[key] = self.membrane.descriptor(
            self.role, desc, self._key_path(key), prop.read_policy, prop.read_accessors
        )

    def _sync_prototype(self) -> None:
        if self.local_proto:
            return

        proto = reflect.get_prototype_of(self.entity)
        if proto is None:
            self.shadow.proto = None
            return

        prop = self.policy.get_property(PROTO_KEY)
        if not prop.read:
            self.shadow.proto = None
            return

        self.shadow.proto = self._read(proto, self._key_path(PROTO_KEY), prop.read_policy)

    def _sync(self, key: Any) -> None:
        """Mirror key, and the prototype when key is not own."""
        self._sync_property(key)
        if key not in self.shadow.props:
            self._sync_prototype()

    # =========================================================================
    # Prototype Traps
    # =========================================================================

    def get_prototype_of(self) -> Any:
        self._sync_prototype()
        return self.shadow.proto

    def set_prototype_of(self, proto: Any) -> bool:
        prop = self.policy.get_property(PROTO_KEY)
        if not prop.write:
            self.shadow.proto = proto
            self.local_proto = True
            return True

        value = self._write(proto, self._key_path(PROTO_KEY), prop.write_policy)
        return self._forward(self._property_errors(PROTO_KEY), reflect.set_prototype_of, self.entity, value)

    # =========================================================================
    # Property Traps
    # =========================================================================

    def get_own_property_descriptor(self, key: Any) -> Descriptor | None:
        self._sync_property(key)
        return self.shadow.props.get(key)

    def has(self, key: Any) -> bool:
        self._sync(key)
        return reflect.has(self.shadow, key)

    def get(self, key: Any, receiver: Any) -> Any:
        self._sync(key)
        return reflect.get(self.shadow, key, receiver)

    def set(self, key: Any, value: Any, receiver: Any) -> bool:
        self._sync(key)

        if reflect.handler_of(receiver) is not self:
            # Assignment through the prototype chain of another object
            desc = self.shadow.props.get(key)
            if desc is None:
                if reflect.has(self.shadow, key):
                    return reflect.set(self.shadow.proto, key, value, receiver)
            elif desc.set is not None:
                reflect.apply(desc.set, receiver, (value,), {})
                return True
            elif desc.get is not None:
                return True

            existing = reflect.get_own_property_descriptor(receiver, key)
            if existing is None:
                return reflect.define_property(receiver, key, Descriptor(value=value))
            return reflect.define_property(receiver, key, replace(existing, value=value, get=None, set=None))

        prop = self.policy.get_property(key)
        if not prop.write:
            return False

        translated = self._write(value, self._key_path(key), prop.write_policy)
        self.local_keys.discard(key)
        return self._forward(self._property_errors(key), reflect.set, self.entity, key, translated)

    def delete_property(self, key: Any) -> bool:
        prop = self.policy.get_property(key)
        if not prop.write:
            return False

        self.shadow.props.pop(key, None)
        self.local_keys.discard(key)
        return self._forward(self._property_errors(key), reflect.delete_property, self.entity, key)

    def define_property(self, key: Any, desc: Descriptor) -> bool:
        self._sync_property(key)

        prop = self.policy.get_property(key)
        if not prop.write:
            self.shadow.props[key] = desc
            self.local_keys.add(key)
            return True

        translated = self.membrane.descriptor(
            self.role.opposite, desc, self._key_path(key), prop.write_policy, prop.write_accessors
        )
        return self._forward(self._property_errors(key), reflect.define_property, self.entity, key, translated)

    def own_keys(self) -> list[Any]:
        keys = self._forward(lambda: self.policy, reflect.own_keys, self.entity)
        for key in keys:
            self._sync_property(key)

        present = set(keys)
        props = self.shadow.props
        for key in list(props):
            if key not in present and key not in self.local_keys:
                del props[key]
        return list(props)

    def enumerable_keys(self) -> list[Any]:
        """Own keys whose descriptors are enumerable."""
        keys = self.own_keys()
        props = self.shadow.props
        return [key for key in keys if props[key].enumerable]

    def is_extensible(self) -> bool:
        return True

    def prevent_extensions(self) -> bool:
        return False

    # =========================================================================
    # Protocol Traps
    # =========================================================================

    def invoke(self, name: str, receiver: Any, *args: Any) -> Any:
        """
        Call one of the original's protocol methods (__iter__, __len__, ...).

        The method is governed like a method read from the original: the
        property at path/name must be readable and its call allowed. The
        guard sees the receiver first, then the arguments.

        Returns:
            The translated result, or ABSENT when the original has no such
            method or the policy denies it
        """
        method = getattr(type(self.entity), name, None)
        if method is None:
            return ABSENT

        prop = self.policy.get_property(name)
        if not prop.read:
            return ABSENT
        call = prop.read_policy.call
        if not call.allow(receiver, *args):
            return ABSENT

        path = self._key_path(name)
        args, _ = self.membrane.arguments(self.role.opposite, args, path, call)
        result = self._forward(lambda: call.result, reflect.apply, method, self.entity, args, {})
        return self._read(result, path, call.result)

    def iterate(self, receiver: Any) -> Iterator[Any]:
        """Iterate the original through __iter__ and the iterator's __next__."""
        iterator = self.invoke("__iter__", receiver)
        if iterator is ABSENT:
            return
        step = reflect.handler_of(iterator)
        if step is None:
            raise TypeError(f"iter() returned non-iterator of type '{type(iterator).__name__}'")

        while True:
            try:
                value = step.invoke("__next__", iterator)
            except StopIteration:
                return
            if value is ABSENT:
                return
            yield value

    # =========================================================================
    # Call Traps
    # =========================================================================

    def apply(self, this: Any, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        call = self.policy.call
        if not call.allow(this, *args, **kwargs):
            return None

        this_value = self._write(this, self.path, call.this_arg)
        args, kwargs = self.membrane.arguments(self.role.opposite, args, self.path, call, kwargs)

        result = self._forward(lambda: call.result, reflect.apply, self.entity, this_value, args, kwargs)
        return self._read(result, self.path, call.result)

    def construct(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        construct = self.policy.construct
        if not construct.allow(*args, **kwargs):
            return types.SimpleNamespace()

        args, kwargs = self.membrane.arguments(self.role.opposite, args, self.path, construct, kwargs)

        result = self._forward(lambda: construct.result, reflect.construct, self.entity, args, kwargs)
        return self._read(result, self.path, construct.result)

    def call(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        """Calling the stand-in: construct for classes, apply otherwise."""
        if isinstance(self.entity, type):
            return self.construct(args, kwargs)
        return self.apply(self.receiver, args, kwargs)

    def bind(self, receiver: Any) -> Any:
        """
        A fresh stand-in for the original bound to receiver.

        The receiver is a value of the stand-in's realm. Bound stand-ins are
        not cached; each method read gives a new one, as in Python.
        """
        interceptor = Interceptor(
            self.membrane, self.entity, Shadow(self.shadow.kind), self.policy, self.path, self.role
        )
        interceptor.receiver = receiver
        return STANDIN_CLASSES[self.shadow.kind].create(interceptor)

    def original(self) -> Any:
        """The original value; for a bound stand-in, the original bound to the original receiver."""
        if self.receiver is None:
            return self.entity
        this = self._write(self.receiver, self.path, self.policy.call.this_arg)
        return types.MethodType(self.entity, this)
