"""
Security tests for guest isolation.

These tests verify that guest code reaches host state only through the
membrane, require() and the exposed names.

Attack vectors tested:
- Dangerous builtins (open, getattr, type, __import__)
- Dunder attributes on stand-ins, by attribute and by item
- The stand-in's own trap set
- Modules refused by the policy
- State shared between sandboxes
- Policy documents written outside the policy root
"""

from collections.abc import Callable
from pathlib import Path

import pytest

from sandtrap.engine import SandTrap
from sandtrap.errors import VerificationError
from sandtrap.membrane import ErrorStandIn


class Account:
    def __init__(self):
        self.balance = 100

    def deposit(self, amount):
        self.balance += amount


def missing(sandbox: SandTrap, expression: str, error: str = "KeyError") -> bool:
    """Run expression in the guest and report whether it raised error."""
    source = f"try:\n    {expression}\n    found = False\nexcept {error}:\n    found = True\nfound"
    return sandbox.eval(source)


# =============================================================================
# Builtin Tests
# =============================================================================


class TestBuiltins:
    """Tests for the guest's builtins."""

    @pytest.mark.parametrize("name", ["open", "getattr", "setattr", "type", "vars", "globals", "exec", "compile"])
    def test_dangerous_builtin_missing(self, sandbox: SandTrap, name: str) -> None:
        """Builtins that reach around the membrane are not defined."""
        with pytest.raises(ErrorStandIn) as exc_info:
            sandbox.eval(f"{name}")
        assert name in str(exc_info.value)

    def test_import_builtin_rejected(self, sandbox: SandTrap) -> None:
        """__import__ cannot even be named."""
        with pytest.raises(VerificationError):
            sandbox.eval("__import__('os')")

    def test_builtins_not_shared(self, policy_root: Path, temp_dir: Path) -> None:
        """Rebinding a builtin in one sandbox leaves the others alone."""
        with SandTrap(policy_root, source_root=temp_dir) as first, SandTrap(
            policy_root, source_root=temp_dir
        ) as second:
            first.eval("len = None")
            assert second.eval("len([1, 2])") == 2


# =============================================================================
# Stand-in Tests
# =============================================================================


class TestStandIns:
    """Tests for reaching host internals through stand-ins."""

    def test_dunder_attribute_rejected(self, sandbox: SandTrap) -> None:
        """Dunder attributes are rejected before anything runs."""
        account = Account()
        sandbox.expose("account", account)
        with pytest.raises(VerificationError):
            sandbox.eval("account.__class__.__init__.__globals__")

    @pytest.mark.parametrize("key", ["__class__", "__dict__", "__init__", "__globals__"])
    def test_dunder_item_missing(self, sandbox: SandTrap, key: str) -> None:
        """Dunder names given as strings do not reach the original."""
        sandbox.expose("account", Account())
        assert missing(sandbox, f"account[{key!r}]")

    def test_function_internals_missing(self, sandbox: SandTrap) -> None:
        sandbox.expose("make_account", Account)
        sandbox.expose("helper", missing)
        assert missing(sandbox, "helper['__globals__']")
        assert missing(sandbox, "helper['__code__']")
        assert missing(sandbox, "make_account['__init__']")

    def test_bound_method_internals_missing(self, sandbox: SandTrap) -> None:
        """A method read by the guest gives away nothing of its binding."""
        sandbox.expose("d", {"a": 1})
        assert missing(sandbox, "d.keys.func", "AttributeError")
        assert missing(sandbox, "d.keys['__self__']")

    def test_trap_set_hidden(self, sandbox: SandTrap) -> None:
        """The stand-in's own handler is not reachable by name."""
        sandbox.expose("account", Account())
        assert missing(sandbox, "account._standin_handler", "AttributeError")

    def test_methods_still_work(self, sandbox: SandTrap) -> None:
        """Isolation does not get in the way of ordinary use."""
        account = Account()
        sandbox.expose("account", account)
        sandbox.eval("account.deposit(5)")
        assert account.balance == 105


# =============================================================================
# Require Tests
# =============================================================================


class TestRequire:
    """Tests for modules refused by the policy."""

    def test_refused_module_is_empty(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """A refused module has none of the module's attributes."""
        write_policy({"options": {"learn": False}})
        with SandTrap(policy_root, expose=()) as trap:
            assert trap.eval("os = require('os')\nhasattr(os, 'system')") is False

    def test_require_needs_a_name(self, sandbox: SandTrap) -> None:
        with pytest.raises(ErrorStandIn):
            sandbox.eval("require(1)")


# =============================================================================
# Policy Root Tests
# =============================================================================


class TestPolicyRoot:
    """Tests for policy documents staying under the policy root."""

    @pytest.mark.parametrize("name", ["../evil", "/etc/evil", "a/../../evil"])
    def test_documents_stay_under_root(self, policy_root: Path, temp_dir: Path, name: str) -> None:
        """Document ids never resolve outside the policy root."""
        with SandTrap(policy_root, source_root=temp_dir) as trap:
            guest = trap.expose(name, {"a": 1})
            assert guest["a"] == 1

        written = list(temp_dir.rglob("*.json"))
        assert written
        for path in written:
            assert policy_root.resolve() in path.resolve().parents
