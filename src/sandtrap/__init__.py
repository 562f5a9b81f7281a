"""
SandTrap - A policy membrane between host and guest Python code.

SandTrap runs untrusted guest code against host objects without handing
the host objects over. Every value that crosses between the two realms is
replaced by a stand-in, and every operation on a stand-in is decided by a
tree of JSON policy documents.
It provides:
- Two-way membrane with identity-preserving stand-ins
- Per-property, per-call and per-argument decisions
- Learn mode that records decisions from real runs for later review
- Guards: small lambda expressions evaluated against call arguments

Example usage:
    from sandtrap import SandTrap

    with SandTrap("policies") as sandbox:
        sandbox.expose("config", {"debug": True})
        sandbox.eval("config['debug']")

    $ sandtrap run script.py --policy-root policies
    $ sandtrap policy show --policy-root policies
"""

__version__ = "0.1.0"
__author__ = "SandTrap Contributors"

from sandtrap.engine import SandTrap  # noqa: E402
from sandtrap.errors import (  # noqa: E402
    ConfigError,
    GuardFailedError,
    ParameterUndefinedError,
    PolicyError,
    PolicyLoadError,
    PolicyViolationError,
    PolicyWriteError,
    SandTrapError,
    VerificationError,
)
from sandtrap.membrane import Membrane  # noqa: E402
from sandtrap.policy import Policy  # noqa: E402

__all__ = [
    "__version__",
    "__author__",
    "ConfigError",
    "GuardFailedError",
    "Membrane",
    "ParameterUndefinedError",
    "Policy",
    "PolicyError",
    "PolicyLoadError",
    "PolicyViolationError",
    "PolicyWriteError",
    "SandTrap",
    "SandTrapError",
    "VerificationError",
]
