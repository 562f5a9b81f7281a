"""
Membrane module for SandTrap.

This module implements the two-way membrane between the host realm and the
guest realm.

Key concepts:
    - Stand-in: The object one realm sees in place of a value from the other
    - Interceptor: The trap set of one stand-in, consulting the policy tree
    - Shadow: A stand-in's backing store in its own realm
    - Membrane: Builds stand-ins and keeps the identity caches

Primitives cross unchanged; everything else crosses as a stand-in.
"""

from sandtrap.membrane.core import Membrane
from sandtrap.membrane.interceptor import Interceptor
from sandtrap.membrane.realm import GUEST_BUILTINS, Kind, Realm
from sandtrap.membrane.reflect import ABSENT, Descriptor, Shadow, handler_of
from sandtrap.membrane.standin import (
    ArrayStandIn,
    DateStandIn,
    ErrorStandIn,
    FunctionStandIn,
    ObjectStandIn,
    StandIn,
    WrapperStandIn,
)

__all__ = [
    "ABSENT",
    "ArrayStandIn",
    "DateStandIn",
    "Descriptor",
    "ErrorStandIn",
    "FunctionStandIn",
    "GUEST_BUILTINS",
    "Interceptor",
    "Kind",
    "Membrane",
    "ObjectStandIn",
    "Realm",
    "Shadow",
    "StandIn",
    "WrapperStandIn",
    "handler_of",
]
