"""
The membrane between the host and guest realms.

Contextify turns a host value into a stand-in for the guest; Decontextify
turns a guest value into a stand-in for the host. Both are the same
transform run in opposite directions.

Identity:
    Each direction keeps a cache from original to stand-in, so transforming
    the same value twice gives the same stand-in (unless the policy asks for
    a Protect override). The caches hold stand-ins weakly and are keyed by
    the identity of the original, which the stand-in keeps alive. The
    inverse direction is answered by the stand-in itself: transforming a
    stand-in of this membrane back returns its original.

Cycles:
    Stand-ins are lazy: nothing is translated until a trap asks for it, and
    the cache lookup happens before a stand-in is built, so cyclic object
    graphs translate without recursion.
"""

import logging
import weakref
from dataclasses import replace
from typing import Any

from sandtrap.membrane.interceptor import Interceptor
from sandtrap.membrane.realm import Realm
from sandtrap.membrane.reflect import Descriptor, Shadow, handler_of
from sandtrap.membrane.standin import STANDIN_CLASSES, StandIn
from sandtrap.policy import AccessorPolicy, CallPolicy, EntityPolicy, Policy
from sandtrap.schema import Override, Role

logger = logging.getLogger(__name__)


class Membrane:
    """
    Two-way membrane for one sandbox.

    Usage:
        membrane = Membrane(policy)
        guest_value = membrane.contextify(host_value, "demo")
        host_value is membrane.decontextify(guest_value, "demo")   # True

    Attributes:
        policy: The policy root consulted for top-level values
        host: The host realm
        guest: The guest realm
    """

    def __init__(self, policy: Policy, host: Realm | None = None, guest: Realm | None = None) -> None:
        self.policy = policy
        self.host = host or Realm.host()
        self.guest = guest or Realm.guest()

        self._caches: dict[Role, weakref.WeakValueDictionary[int, StandIn]] = {
            Role.CONTEXTIFY: weakref.WeakValueDictionary(),
            Role.DECONTEXTIFY: weakref.WeakValueDictionary(),
        }

    def origin(self, role: Role) -> Realm:
        """The realm values come from when travelling in a direction."""
        return self.host if role is Role.CONTEXTIFY else self.guest

    # =========================================================================
    # Values
    # =========================================================================

    def transform(self, role: Role, entity: Any, path: str, policy: EntityPolicy | None = None) -> Any:
        """
        Translate a value in one direction.

        Args:
            role: CONTEXTIFY (host to guest) or DECONTEXTIFY (guest to host)
            entity: The value to translate
            path: Path of the value, used for policy lookup and logging
            policy: Policy for the value (default: top-level policy by path)

        Returns:
            The value itself for primitives and exposed values, otherwise a
            stand-in (or the original, for a stand-in travelling back)
        """
        if self.origin(role).is_primitive(entity):
            return entity

        if policy is not None and policy.override is Override.EXPOSE:
            return entity

        handler = handler_of(entity)
        if isinstance(handler, Interceptor) and handler.membrane is self:
            if handler.role is role.opposite:
                return handler.original()
            return entity

        cache = self._caches[role]
        protect = policy is not None and policy.override is Override.PROTECT
        if not protect:
            cached = cache.get(id(entity))
            if cached is not None and handler_of(cached).entity is entity:
                return cached

        if policy is None:
            if role is Role.CONTEXTIFY:
                policy = self.policy.get_contextify_entity_policy(path)
            else:
                policy = self.policy.get_decontextify_entity_policy(path)

        kind = self.origin(role).classify(entity)
        interceptor = Interceptor(self, entity, Shadow(kind), policy, path, role)
        standin = STANDIN_CLASSES[kind].create(interceptor)
        cache[id(entity)] = standin

        logger.debug("%s %s at %s", role.value, kind.value, path)
        return standin

    def contextify(self, entity: Any, path: str, policy: EntityPolicy | None = None) -> Any:
        """Translate a host value for the guest."""
        return self.transform(Role.CONTEXTIFY, entity, path, policy)

    def decontextify(self, entity: Any, path: str, policy: EntityPolicy | None = None) -> Any:
        """Translate a guest value for the host."""
        return self.transform(Role.DECONTEXTIFY, entity, path, policy)

    # =========================================================================
    # Descriptors
    # =========================================================================

    def descriptor(
        self,
        role: Role,
        desc: Descriptor,
        path: str,
        value_policy: EntityPolicy,
        accessor_policy: AccessorPolicy,
    ) -> Descriptor:
        """
        Translate a property descriptor.

        The value is translated with value_policy; a getter and setter with
        accessor_policy.get / accessor_policy.set at path.get / path.set.
        """
        if desc.is_accessor:
            getter = desc.get
            setter = desc.set
            if getter is not None:
                getter = self.transform(role, getter, f"{path}.get", accessor_policy.get)
            if setter is not None:
                setter = self.transform(role, setter, f"{path}.set", accessor_policy.set)
            return replace(desc, value=None, get=getter, set=setter)

        return replace(desc, value=self.transform(role, desc.value, path, value_policy))

    def contextify_descriptor(
        self, desc: Descriptor, path: str, value_policy: EntityPolicy, accessor_policy: AccessorPolicy
    ) -> Descriptor:
        return self.descriptor(Role.CONTEXTIFY, desc, path, value_policy, accessor_policy)

    def decontextify_descriptor(
        self, desc: Descriptor, path: str, value_policy: EntityPolicy, accessor_policy: AccessorPolicy
    ) -> Descriptor:
        return self.descriptor(Role.DECONTEXTIFY, desc, path, value_policy, accessor_policy)

    # =========================================================================
    # Arguments
    # =========================================================================

    def arguments(
        self,
        role: Role,
        args: tuple[Any, ...] | list[Any],
        path: str,
        call_policy: CallPolicy,
        kwargs: dict[str, Any] | None = None,
    ) -> tuple[list[Any], dict[str, Any]]:
        """
        Translate call arguments.

        Each positional argument gets call_policy.arguments(index, args),
        which may depend on the other arguments; each keyword argument gets
        call_policy.keyword(name). Primitives never consult the policy.
        """
        origin = self.origin(role)

        translated = []
        for index, arg in enumerate(args):
            if origin.is_primitive(arg):
                translated.append(arg)
                continue
            translated.append(self.transform(role, arg, f"{path}[{index}]", call_policy.arguments(index, args)))

        keywords = {}
        for name, arg in (kwargs or {}).items():
            if origin.is_primitive(arg):
                keywords[name] = arg
                continue
            keywords[name] = self.transform(role, arg, f"{path}[{name}]", call_policy.keyword(name))

        return translated, keywords

    def contextify_arguments(
        self,
        args: tuple[Any, ...] | list[Any],
        path: str,
        call_policy: CallPolicy,
        kwargs: dict[str, Any] | None = None,
    ) -> tuple[list[Any], dict[str, Any]]:
        return self.arguments(Role.CONTEXTIFY, args, path, call_policy, kwargs)

    def decontextify_arguments(
        self,
        args: tuple[Any, ...] | list[Any],
        path: str,
        call_policy: CallPolicy,
        kwargs: dict[str, Any] | None = None,
    ) -> tuple[list[Any], dict[str, Any]]:
        return self.arguments(Role.DECONTEXTIFY, args, path, call_policy, kwargs)
