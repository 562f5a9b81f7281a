"""
Policy tree nodes.

Every value crossing the membrane is governed by an EntityPolicy. Its
children are created on demand as the guest (or host) touches the value:

    EntityPolicy                 one crossed value
      ├─ get_property(key)       PropertyPolicy: read / write decisions
      │    ├─ read_policy        EntityPolicy for the value read
      │    └─ write_policy       EntityPolicy for the value written
      ├─ call                    CallPolicy: allow, this_arg, arguments, result
      └─ construct               ConstructPolicy: allow, arguments, result

Roles:
    Each node faces one direction (Role.CONTEXTIFY or Role.DECONTEXTIFY).
    Values that travel into the other realm's original (written values,
    receivers, arguments) are governed by nodes of the opposite role; values
    handed back (read values, results) keep the role of their entity.

Learning:
    A decision that is not yet in the tree is derived from the nearest
    configured defaults (learn mode grants it), frozen into the node and
    scheduled for persistence. Denials are reported on every evaluation.
"""

from collections.abc import Callable
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING, Any, Union

from sandtrap.errors import GuardFailedError, SandTrapError
from sandtrap.schema import (
    PROCESS_DEFAULTS,
    Action,
    ActionDefaults,
    ArgumentRule,
    CallPolicyData,
    EntityPolicyData,
    Override,
    PropertyPolicyData,
    Role,
)

if TYPE_CHECKING:
    from sandtrap.policy.engine import Policy

# Inline data, an indirection id, or a thunk producing either
PolicySource = Union[
    EntityPolicyData,
    str,
    Callable[[], Union[EntityPolicyData, str]],
]


def _same_value(actual: Any, expected: Any) -> bool:
    """Strict equality for argument rules: same kind and same value."""
    numbers = (int, float)
    if (
        isinstance(actual, numbers)
        and isinstance(expected, numbers)
        and not isinstance(actual, bool)
        and not isinstance(expected, bool)
    ):
        return actual == expected
    return type(actual) is type(expected) and actual == expected


# =============================================================================
# Entity Policy
# =============================================================================


class EntityPolicy:
    """
    Policy for one crossed value.

    The underlying data is resolved lazily on first use, so wrapping a value
    that never consults its policy leaves the persisted tree untouched.

    Attributes:
        policy: The owning policy root
        path: Path of the value (e.g. "demo/a")
        role: Which membrane direction this node faces
        parent: The entity whose options this node inherits, if any
    """

    def __init__(
        self,
        policy: "Policy",
        source: PolicySource,
        path: str,
        role: Role,
        parent: "EntityPolicy | None" = None,
    ) -> None:
        self.policy = policy
        self.path = path
        self.role = role
        self.parent = parent
        self._source = source
        self._properties: dict[str, PropertyPolicy] = {}

    def __repr__(self) -> str:
        return f"EntityPolicy(path={self.path!r}, role={self.role.value})"

    @cached_property
    def data(self) -> EntityPolicyData:
        """The node's data, resolving thunks and indirections."""
        source = self._source
        if callable(source):
            source = source()
        if isinstance(source, str):
            return self.policy.resolve(source, self.role)
        return source

    @property
    def override(self) -> Override:
        """The explicit override for this value (Override.NONE if unset)."""
        return self.data.override or Override.NONE

    # =========================================================================
    # Defaults
    # =========================================================================

    def option(self, name: str) -> Any:
        """
        Look up an option, walking up to the nearest node that sets it.

        Falls back to the root document options, then to the process-wide
        defaults.
        """
        node: EntityPolicy | None = self
        while node is not None:
            options = node.data.options
            if options is not None:
                value = getattr(options, name)
                if value is not None:
                    return value
            node = node.parent

        value = getattr(self.policy.document.options, name)
        if value is not None:
            return value
        return getattr(PROCESS_DEFAULTS, name)

    def get_default(self, action: Action, path: str) -> bool:
        """Derive the decision for an action that is not in the tree."""
        defaults: ActionDefaults = self.option(self.role.value)
        default = defaults.for_action(action)

        if self.option("learn"):
            if self.option("interactive"):
                return self.policy.prompt(self.role, action, path, default)
            return True

        return default

    def invalidate(self) -> None:
        """Schedule persistence unless learning is switched off here."""
        if self.option("learn") is False:
            return
        self.policy.invalidate()

    # =========================================================================
    # Children
    # =========================================================================

    def get_property(self, key: Any) -> "PropertyPolicy":
        """Return the (memoized) policy for a property, creating it if new."""
        name = str(key)
        prop = self._properties.get(name)
        if prop is not None:
            return prop

        with self.policy.lock:
            data = self.data.properties.get(name)
            created = data is None
            if data is None:
                data = PropertyPolicyData()
                self.data.properties[name] = data
        if created:
            self.invalidate()

        prop = PropertyPolicy(self, data, f"{self.path}/{name}")
        self._properties[name] = prop
        return prop

    @cached_property
    def call(self) -> "CallPolicy":
        """Policy for calling this value."""
        return CallPolicy(self, "call", Action.CALL)

    @cached_property
    def construct(self) -> "ConstructPolicy":
        """Policy for constructing with this value."""
        return ConstructPolicy(self, "construct", Action.CONSTRUCT)

    def child(self, owner: Any, slot: str, path: str, role: Role) -> "EntityPolicy":
        """
        Entity policy for a sub-policy slot of owner's data.

        The slot is materialized as an empty inline node the first time the
        child's data is needed.
        """

        def resolve_slot() -> EntityPolicyData | str:
            with self.policy.lock:
                value = getattr(owner.data, slot)
                if value is not None:
                    return value
                value = EntityPolicyData()
                setattr(owner.data, slot, value)
            self.invalidate()
            return value

        return EntityPolicy(self.policy, resolve_slot, path, role, parent=self)


# =============================================================================
# Property Policy
# =============================================================================


@dataclass(frozen=True)
class AccessorPolicy:
    """Entity policies for the getter and setter of an accessor descriptor."""

    get: EntityPolicy
    set: EntityPolicy


class PropertyPolicy:
    """
    Read/write decisions for one property of an entity.

    Attributes:
        entity: The owning entity policy
        data: The persisted property data
        path: Path of the property (e.g. "demo/a")
    """

    def __init__(self, entity: EntityPolicy, data: PropertyPolicyData, path: str) -> None:
        self.entity = entity
        self.data = data
        self.path = path

    def __repr__(self) -> str:
        return f"PropertyPolicy(path={self.path!r}, role={self.role.value})"

    @property
    def policy(self) -> "Policy":
        return self.entity.policy

    @property
    def role(self) -> Role:
        return self.entity.role

    def _decide(self, action: Action) -> bool:
        field = action.value
        decision = getattr(self.data, field)
        if decision is None:
            decision = self.entity.get_default(action, self.path)
            with self.policy.lock:
                setattr(self.data, field, decision)
            self.entity.invalidate()

        if not decision:
            self.policy.report_violation(
                f"{action.value.capitalize()} action on path {self.path} denied.",
                path=self.path,
                action=action.value,
            )
        return decision

    @property
    def read(self) -> bool:
        """Whether the property may be read."""
        return self._decide(Action.READ)

    @property
    def write(self) -> bool:
        """Whether the property may be written."""
        return self._decide(Action.WRITE)

    @cached_property
    def read_policy(self) -> EntityPolicy:
        """Policy for values read from the property."""
        return self.entity.child(self, "read_policy", self.path, self.role)

    @cached_property
    def write_policy(self) -> EntityPolicy:
        """Policy for values written into the property."""
        return self.entity.child(self, "write_policy", self.path, self.role.opposite)

    def _accessor(self, role: Role, suffix: str, build: Callable[[], EntityPolicyData]) -> EntityPolicy:
        return EntityPolicy(self.policy, build, f"{self.path}.{suffix}", role, parent=self.entity)

    def _slot(self, name: str) -> EntityPolicyData | str:
        return self.entity.child(self, name, self.path, self.role).data

    @cached_property
    def read_accessors(self) -> AccessorPolicy:
        """
        Policies for a getter/setter pair read from the original.

        Calling the getter is a read (its result is governed by read_policy);
        calling the setter is a write (its argument by write_policy).
        """
        return AccessorPolicy(
            get=self._accessor(
                self.role,
                "get",
                lambda: EntityPolicyData(
                    call=CallPolicyData(
                        allow=self.read,
                        this_arg=EntityPolicyData(),
                        arguments=[],
                        result=self._slot("read_policy"),
                    )
                ),
            ),
            set=self._accessor(
                self.role,
                "set",
                lambda: EntityPolicyData(
                    call=CallPolicyData(
                        allow=self.write,
                        this_arg=EntityPolicyData(),
                        arguments=[self._slot("write_policy")],
                        result=EntityPolicyData(),
                    )
                ),
            ),
        )

    @cached_property
    def write_accessors(self) -> AccessorPolicy:
        """
        Policies for a getter/setter pair defined onto the original.

        The accessors come from the other realm, so they face the opposite
        role: the getter's result is a written value, the setter's argument
        a read one.
        """
        role = self.role.opposite
        return AccessorPolicy(
            get=self._accessor(
                role,
                "get",
                lambda: EntityPolicyData(
                    call=CallPolicyData(
                        allow=self.write,
                        this_arg=EntityPolicyData(),
                        arguments=[],
                        result=self._slot("write_policy"),
                    )
                ),
            ),
            set=self._accessor(
                role,
                "set",
                lambda: EntityPolicyData(
                    call=CallPolicyData(
                        allow=self.read,
                        this_arg=EntityPolicyData(),
                        arguments=[self._slot("read_policy")],
                        result=EntityPolicyData(),
                    )
                ),
            ),
        )


# =============================================================================
# Call / Construct Policy
# =============================================================================


class CallPolicy:
    """
    Policy for calling a function.

    Usage:
        call = entity.call
        if call.allow(this, *args, **kwargs):
            this = membrane.decontextify(this, call.path, call.this_arg)
            ...

    Attributes:
        entity: The owning entity policy
        action: Action.CALL or Action.CONSTRUCT
        path: Path of the function
    """

    def __init__(self, entity: EntityPolicy, slot: str, action: Action) -> None:
        self.entity = entity
        self.action = action
        self.path = entity.path
        self._slot = slot

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={self.path!r}, role={self.role.value})"

    @property
    def policy(self) -> "Policy":
        return self.entity.policy

    @property
    def role(self) -> Role:
        return self.entity.role

    @cached_property
    def data(self) -> CallPolicyData:
        with self.policy.lock:
            data = getattr(self.entity.data, self._slot)
            if data is not None:
                return data
            data = CallPolicyData()
            setattr(self.entity.data, self._slot, data)
        self.entity.invalidate()
        return data

    def _evaluate(self, guard_args: tuple[Any, ...], kwargs: dict[str, Any]) -> bool:
        allow = self.data.allow
        if allow is None:
            allow = self.entity.get_default(self.action, self.path)
            with self.policy.lock:
                self.data.allow = allow
            self.entity.invalidate()

        if isinstance(allow, bool):
            result = allow
        else:
            guard = self.policy.guards.get(allow, self.path)
            try:
                result = bool(guard(*guard_args, **kwargs))
            except SandTrapError:
                raise
            except Exception as e:
                raise GuardFailedError(
                    path=self.path,
                    source=allow,
                    underlying_error=f"{type(e).__name__}: {e}",
                ) from e

        if not result:
            self.policy.report_violation(
                f"{self.action.value.capitalize()} action on path {self.path} denied.",
                path=self.path,
                action=self.action.value,
            )
        return result

    def allow(self, this: Any = None, *args: Any, **kwargs: Any) -> bool:
        """
        Decide whether this invocation may proceed.

        A guard receives the receiver first when there is one.

        Raises:
            PolicyError: If the guard is invalid or raises
        """
        guard_args = args if this is None else (this, *args)
        return self._evaluate(guard_args, kwargs)

    @cached_property
    def this_arg(self) -> EntityPolicy:
        """Policy for the receiver, which travels into the original."""
        return self.entity.child(self, "this_arg", self.path, self.role.opposite)

    @cached_property
    def result(self) -> EntityPolicy:
        """Policy for the returned value."""
        return self.entity.child(self, "result", self.path, self.role)

    def arguments(self, index: int, args: tuple[Any, ...] | list[Any]) -> EntityPolicy:
        """
        Policy for the positional argument at index.

        Conditional rules are tried in order: the first whose dependency
        argument equals its expected value, or the first unconditional one,
        wins. When none matches a catch-all rule is appended.
        """
        role = self.role.opposite
        path = f"{self.path}[{index}]"
        appended = False

        with self.policy.lock:
            slots = self.data.arguments
            if slots is None:
                slots = []
                self.data.arguments = slots
            while len(slots) <= index:
                slots.append(None)
                appended = True

            slot = slots[index]
            if slot is None:
                slot = EntityPolicyData()
                slots[index] = slot
                appended = True

            if isinstance(slot, list):
                chosen = None
                for rule in slot:
                    if rule.unconditional:
                        chosen = rule.policy
                        break
                    if rule.dependency < len(args) and _same_value(args[rule.dependency], rule.expected):
                        chosen = rule.policy
                        break
                if chosen is None:
                    chosen = EntityPolicyData()
                    slot.append(ArgumentRule(policy=chosen))
                    appended = True
            else:
                chosen = slot

        if appended:
            self.entity.invalidate()

        return EntityPolicy(self.policy, chosen, path, role, parent=self.entity)

    def keyword(self, name: str) -> EntityPolicy:
        """Policy for a keyword argument."""
        created = False
        with self.policy.lock:
            keywords = self.data.keywords
            if keywords is None:
                keywords = {}
                self.data.keywords = keywords
            slot = keywords.get(name)
            if slot is None:
                slot = EntityPolicyData()
                keywords[name] = slot
                created = True
        if created:
            self.entity.invalidate()

        return EntityPolicy(self.policy, slot, f"{self.path}[{name}]", self.role.opposite, parent=self.entity)


class ConstructPolicy(CallPolicy):
    """Policy for constructing with a class. Guards see the arguments only."""

    def allow(self, *args: Any, **kwargs: Any) -> bool:  # type: ignore[override]
        """Decide whether this construction may proceed."""
        return self._evaluate(args, kwargs)
