"""
Schema definitions for SandTrap.

This module defines the Pydantic models for the persisted policy forest:
- EntityPolicyData: Policy for one crossed value (properties, call, construct)
- PropertyPolicyData: Read/write decisions for one property
- CallPolicyData / ArgumentRule: Call and construct policies
- PolicyDefaults: Learn/interactive switches and per-action defaults
- PolicyDocument: The root document (options, onerror, manifest)

Design Decisions:
    - Policy models are mutable: decisions are frozen into the node the first
      time they are resolved, and the tree is edited in place as it learns.
    - A string in place of inline data is an indirection to a separate
      sub-document, addressed by id through the manifest.
    - Field names follow Python style; the JSON documents keep the camelCase
      keys (readPolicy, writePolicy, thisArg) through aliases.
    - Serialization is deterministic: unset fields are dropped and keys are
      sorted when written (see sandtrap.store).
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """
    Which membrane direction a policy node faces.

    CONTEXTIFY nodes govern host values seen from the guest;
    DECONTEXTIFY nodes govern guest values seen from the host.
    """

    CONTEXTIFY = "contextify"
    DECONTEXTIFY = "decontextify"

    @property
    def opposite(self) -> "Role":
        """The role of a value travelling the other way."""
        if self is Role.CONTEXTIFY:
            return Role.DECONTEXTIFY
        return Role.CONTEXTIFY


class Override(str, Enum):
    """Explicit override of the membrane for one entity."""

    EXPOSE = "expose"
    PROTECT = "protect"
    NONE = "none"


class Action(str, Enum):
    """The four decisions a policy node can make."""

    READ = "read"
    WRITE = "write"
    CALL = "call"
    CONSTRUCT = "construct"


class OnError(str, Enum):
    """How policy violations are reported."""

    SILENT = "silent"
    WARN = "warn"
    THROW = "throw"


# =============================================================================
# Policy Defaults
# =============================================================================


class ActionDefaults(BaseModel):
    """Default decisions for one direction when not learning."""

    model_config = ConfigDict(extra="forbid")

    read: bool = False
    write: bool = False
    call: bool = False
    construct: bool = False

    def for_action(self, action: Action) -> bool:
        """Return the default for an action."""
        return bool(getattr(self, action.value))


class PolicyDefaults(BaseModel):
    """
    Options controlling how unset decisions are derived.

    Attributes:
        interactive: Ask the operator when learning (default: no)
        learn: Grant unset decisions and record them (default: inherit)
        contextify: Defaults for host values seen from the guest
        decontextify: Defaults for guest values seen from the host
    """

    model_config = ConfigDict(extra="forbid")

    interactive: bool | None = None
    learn: bool | None = None
    contextify: ActionDefaults | None = None
    decontextify: ActionDefaults | None = None

    def defaults_for(self, role: Role) -> ActionDefaults:
        """Return the action defaults for a role."""
        defaults = self.contextify if role is Role.CONTEXTIFY else self.decontextify
        return defaults if defaults is not None else ActionDefaults()


# The process-wide defaults: learn, never prompt, deny everything otherwise.
PROCESS_DEFAULTS = PolicyDefaults(
    interactive=False,
    learn=True,
    contextify=ActionDefaults(),
    decontextify=ActionDefaults(),
)


# =============================================================================
# Policy Tree Models
# =============================================================================


class PropertyPolicyData(BaseModel):
    """
    Decisions for one property of an entity.

    Attributes:
        read: Whether the property may be read (None = not yet decided)
        write: Whether the property may be written (None = not yet decided)
        read_policy: Policy for the value read from the property
        write_policy: Policy for the value written into the property
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    read: bool | None = None
    write: bool | None = None
    read_policy: Union["EntityPolicyData", str, None] = Field(default=None, alias="readPolicy")
    write_policy: Union["EntityPolicyData", str, None] = Field(default=None, alias="writePolicy")


class ArgumentRule(BaseModel):
    """
    A conditional argument policy.

    The rule applies when the argument at position `dependency` equals
    `expected`. A rule without dependency/expected is unconditional.
    """

    model_config = ConfigDict(extra="forbid")

    dependency: int | None = None
    expected: bool | int | float | str | None = None
    policy: Union["EntityPolicyData", str] = Field(default_factory=lambda: EntityPolicyData())

    @property
    def unconditional(self) -> bool:
        """Whether the rule matches any call."""
        return self.dependency is None or self.expected is None


ArgumentSlot = Union["EntityPolicyData", list[ArgumentRule], str, None]


class CallPolicyData(BaseModel):
    """
    Policy for calling or constructing a function.

    Attributes:
        allow: A static decision, or the source of a guard lambda
        this_arg: Policy for the receiver
        arguments: Positional argument policies (inline, indirection, or rules)
        keywords: Keyword argument policies by name
        result: Policy for the returned value
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    allow: bool | str | None = None
    this_arg: Union["EntityPolicyData", str, None] = Field(default=None, alias="thisArg")
    arguments: list[ArgumentSlot] | None = None
    keywords: dict[str, Union["EntityPolicyData", str]] | None = None
    result: Union["EntityPolicyData", str, None] = None


class EntityPolicyData(BaseModel):
    """
    Policy for one crossed value.

    Attributes:
        type: The role the node was created for
        override: Expose (no membrane) or Protect (fresh stand-in)
        options: Defaults for this subtree
        properties: Per-property decisions, keyed by str(key)
        call: Policy for calling the value
        construct: Policy for constructing with the value
    """

    model_config = ConfigDict(extra="forbid")

    type: Role | None = None
    override: Override | None = None
    options: PolicyDefaults | None = None
    properties: dict[str, PropertyPolicyData] = Field(default_factory=dict)
    call: CallPolicyData | None = None
    construct: CallPolicyData | None = None


PropertyPolicyData.model_rebuild()
ArgumentRule.model_rebuild()
CallPolicyData.model_rebuild()
EntityPolicyData.model_rebuild()


class PolicyDocument(BaseModel):
    """
    The root policy document.

    Attributes:
        options: Process-wide defaults for this policy
        onerror: How violations are reported (silent, warn, throw)
        global_policy: Id of the global contextify policy
        manifest: Sub-document id to path (relative to the policy root)
        parameters: Named values guards may consult through param()
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    options: PolicyDefaults = Field(default_factory=lambda: PROCESS_DEFAULTS.model_copy(deep=True))
    onerror: OnError = OnError.WARN
    global_policy: str = Field(default="global", alias="global")
    manifest: dict[str, str] = Field(default_factory=dict)
    parameters: dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Serialization Helpers
# =============================================================================


def dump_document(model: BaseModel) -> dict[str, Any]:
    """Dump a policy model to plain JSON data, omitting unset fields."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def to_json(model: BaseModel) -> str:
    """Render a policy model as pretty-printed, key-sorted JSON."""
    return json.dumps(dump_document(model), indent=2, sort_keys=True) + "\n"


def load_entity_policy(path: Path | str) -> EntityPolicyData:
    """
    Load an entity policy sub-document from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the JSON doesn't match the schema
    """
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        data = json.load(f)

    return EntityPolicyData.model_validate(data)


def load_policy_document(path: Path | str) -> PolicyDocument:
    """
    Load the root policy document from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the JSON doesn't match the schema
    """
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        data = json.load(f)

    return PolicyDocument.model_validate(data)
