"""
Policy module for SandTrap.

This module implements the hierarchical, lazily learned policy tree that
the membrane consults on every crossing.

Key concepts:
    - Policy: The root; owns one persisted forest and reports violations
    - EntityPolicy: Policy for one crossed value, addressed by path
    - PropertyPolicy: Read/write decisions for one property
    - CallPolicy / ConstructPolicy: Allow decision (static or guard) plus
      policies for receiver, arguments and result
    - Learn mode: Unset decisions are granted and recorded

Every decision is:
    - Frozen once resolved
    - Persisted (debounced) when learned
    - Reported when it denies
"""

from sandtrap.policy.engine import Policy, confirm_action
from sandtrap.policy.guards import GuardCache, compile_guard
from sandtrap.policy.nodes import (
    AccessorPolicy,
    CallPolicy,
    ConstructPolicy,
    EntityPolicy,
    PropertyPolicy,
)

__all__ = [
    "AccessorPolicy",
    "CallPolicy",
    "ConstructPolicy",
    "EntityPolicy",
    "GuardCache",
    "Policy",
    "PropertyPolicy",
    "compile_guard",
    "confirm_action",
]
