"""
Unit tests for the policy tree.

Tests cover:
- Learn mode (grant, record, persist)
- Non-learn mode (defaults, frozen decisions, violations)
- Interactive mode (operator prompt)
- Option inheritance
- Indirections to sub-documents
- Call policies: guards, this/arguments/keywords/result sub-policies
- Conditional argument rules
- Violation reporting per onerror mode
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from sandtrap.errors import GuardFailedError, PolicyError, PolicyViolationError
from sandtrap.policy import Policy
from sandtrap.schema import Action, EntityPolicyData, OnError, Override, Role


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def learning_policy(policy_root: Path) -> Policy:
    """A policy over a fresh root (learning by default)."""
    policy = Policy(policy_root, write_delay=60)
    yield policy
    policy.close()


def strict(write_policy: Callable[..., Path], policy_root: Path, onerror: str = "warn", **entities: Any) -> Policy:
    """A non-learning policy over the given sub-documents."""
    write_policy({"options": {"learn": False}, "onerror": onerror}, **entities)
    return Policy(policy_root, write_delay=60)


# =============================================================================
# Learn Mode Tests
# =============================================================================


class TestLearnMode:
    """Tests for learning policies."""

    def test_learning_by_default(self, learning_policy: Policy) -> None:
        """A fresh policy learns."""
        assert learning_policy.learning is True

    def test_grants_and_records(self, learning_policy: Policy) -> None:
        """Unset decisions are granted and frozen into the tree."""
        entity = learning_policy.get_contextify_entity_policy("demo")
        prop = entity.get_property("a")
        assert prop.read is True
        assert prop.data.read is True
        assert prop.data.write is None

    def test_registers_document(self, learning_policy: Policy) -> None:
        """Touched top-level policies are added to the manifest."""
        entity = learning_policy.get_contextify_entity_policy("demo")
        assert "demo" not in learning_policy.document.manifest
        entity.get_property("a")
        assert learning_policy.document.manifest["demo"] == "demo.json"
        assert entity.data.type is Role.CONTEXTIFY

    def test_persisted(self, learning_policy: Policy, read_policy: Callable[[str], dict[str, Any]]) -> None:
        """Learned decisions reach the disk on flush."""
        entity = learning_policy.get_contextify_entity_policy("demo")
        assert entity.get_property("a").write is True
        assert entity.call.allow() is True
        learning_policy.flush()

        data = read_policy("demo")
        assert data["properties"]["a"] == {"write": True}
        assert data["call"]["allow"] is True
        assert data["type"] == "contextify"

    def test_lazy_node_untouched(self, learning_policy: Policy) -> None:
        """Creating a node without consulting it changes nothing."""
        learning_policy.get_contextify_entity_policy("demo")
        assert "demo" not in learning_policy.document.manifest
        assert not learning_policy.store.has_entity_data("demo")

    def test_property_memoized(self, learning_policy: Policy) -> None:
        """The same key gives the same property node."""
        entity = learning_policy.get_contextify_entity_policy("demo")
        assert entity.get_property("a") is entity.get_property("a")
        assert entity.get_property(0) is entity.get_property("0")

    def test_learned_decision_is_frozen(self, learning_policy: Policy) -> None:
        """An explicit decision is never re-derived."""
        entity = learning_policy.get_contextify_entity_policy("demo")
        prop = entity.get_property("a")
        prop.data.read = False
        assert prop.read is False


# =============================================================================
# Non-learn Mode Tests
# =============================================================================


class TestNonLearnMode:
    """Tests for policies that do not learn."""

    def test_denies_by_default(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Unset decisions fall back to the (deny) defaults."""
        policy = strict(write_policy, policy_root)
        entity = policy.get_contextify_entity_policy("demo")
        assert entity.get_property("a").read is False
        assert entity.call.allow() is False

    def test_explicit_decisions(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Explicit decisions in the tree are honored."""
        policy = strict(write_policy, policy_root, demo={"properties": {"a": {"read": True, "write": False}}})
        prop = policy.get_contextify_entity_policy("demo").get_property("a")
        assert prop.read is True
        assert prop.write is False

    def test_role_defaults(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Defaults are per role."""
        write_policy({"options": {"learn": False, "contextify": {"read": True}}})
        policy = Policy(policy_root, write_delay=60)
        assert policy.get_contextify_entity_policy("a").get_property("x").read is True
        assert policy.get_decontextify_entity_policy("b").get_property("x").read is False

    def test_no_write_back(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Nothing is scheduled for writing when not learning."""
        policy = strict(write_policy, policy_root)
        entity = policy.get_contextify_entity_policy("demo")
        entity.get_property("a").read
        assert policy.store.pending is False
        assert "demo" not in policy.document.manifest

    def test_require_unknown_module(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Requiring a module without a document is refused."""
        policy = strict(write_policy, policy_root, math={})
        assert policy.require("os") is None
        assert policy.require("math") is not None

    def test_require_when_learning(self, learning_policy: Policy) -> None:
        """Any module may be required while learning."""
        entity = learning_policy.require("os")
        assert entity is not None
        assert entity.role is Role.CONTEXTIFY


# =============================================================================
# Interactive Mode Tests
# =============================================================================


class TestInteractiveMode:
    """Tests for interactive learning."""

    def test_prompt_decides(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """The operator's answer is recorded."""
        write_policy({"options": {"learn": True, "interactive": True}})
        asked = []

        def prompt(role: Role, action: Action, path: str, default: bool) -> bool:
            asked.append((role, action, path, default))
            return action is Action.READ

        policy = Policy(policy_root, write_delay=60, prompt=prompt)
        prop = policy.get_contextify_entity_policy("demo").get_property("a")
        assert prop.read is True
        assert prop.write is False
        assert prop.read is True

        assert asked == [
            (Role.CONTEXTIFY, Action.READ, "demo/a", False),
            (Role.CONTEXTIFY, Action.WRITE, "demo/a", False),
        ]
        assert prop.data.write is False


# =============================================================================
# Option Inheritance Tests
# =============================================================================


class TestOptionInheritance:
    """Tests for option lookup through the tree."""

    def test_subtree_options(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Options set on a node apply to its subtree."""
        policy = strict(
            write_policy,
            policy_root,
            demo={"options": {"contextify": {"read": True}}, "properties": {"a": {"read": True}}},
        )
        entity = policy.get_contextify_entity_policy("demo")
        child = entity.get_property("a").read_policy
        assert entity.get_property("x").read is True
        assert child.get_property("y").read is True

    def test_learn_off_in_subtree(self, learning_policy: Policy) -> None:
        """A node can switch learning off for its subtree."""
        learning_policy.store.set_entity_data("frozen", EntityPolicyData(options={"learn": False}))
        entity = learning_policy.get_contextify_entity_policy("frozen")
        assert entity.option("learn") is False
        assert entity.get_property("a").read is False

    def test_falls_back_to_process_defaults(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Options missing everywhere come from the process defaults."""
        write_policy({"options": {}})
        policy = Policy(policy_root, write_delay=60)
        entity = policy.get_contextify_entity_policy("demo")
        assert entity.option("learn") is True
        assert entity.option("interactive") is False


# =============================================================================
# Overrides and Indirections
# =============================================================================


class TestIndirections:
    """Tests for overrides and string indirections."""

    def test_override(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Overrides are read from the node."""
        policy = strict(write_policy, policy_root, demo={"override": "expose"})
        assert policy.get_contextify_entity_policy("demo").override is Override.EXPOSE
        assert policy.get_contextify_entity_policy("other").override is Override.NONE

    def test_indirection_shares_document(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """A string sub-policy points at a shared sub-document."""
        policy = strict(
            write_policy,
            policy_root,
            demo={"properties": {"a": {"read": True, "readPolicy": "shared"}}},
            shared={"properties": {"x": {"read": True}}},
        )
        child = policy.get_contextify_entity_policy("demo").get_property("a").read_policy
        assert child.data is policy.store.get_entity_data("shared")
        assert child.get_property("x").read is True

    def test_indirection_created_when_learning(self, learning_policy: Policy) -> None:
        """A missing sub-document is created and registered."""
        data = learning_policy.resolve("new/doc", Role.DECONTEXTIFY)
        assert data.type is Role.DECONTEXTIFY
        assert learning_policy.document.manifest["new/doc"] == "new/doc.json"


# =============================================================================
# Property Sub-policy Tests
# =============================================================================


class TestPropertySubPolicies:
    """Tests for read/write sub-policies and accessor policies."""

    def test_roles(self, learning_policy: Policy) -> None:
        """Read values keep the role, written values flip it."""
        prop = learning_policy.get_contextify_entity_policy("demo").get_property("a")
        assert prop.read_policy.role is Role.CONTEXTIFY
        assert prop.write_policy.role is Role.DECONTEXTIFY
        assert prop.read_policy.path == "demo/a"

    def test_sub_policy_materialized_lazily(self, learning_policy: Policy) -> None:
        """The read policy slot is filled on first use."""
        prop = learning_policy.get_contextify_entity_policy("demo").get_property("a")
        child = prop.read_policy
        assert prop.data.read_policy is None
        child.get_property("b").read
        assert isinstance(prop.data.read_policy, EntityPolicyData)
        assert "b" in prop.data.read_policy.properties

    def test_read_accessors(self, learning_policy: Policy) -> None:
        """Getter calls follow read, setter calls follow write."""
        prop = learning_policy.get_contextify_entity_policy("demo").get_property("a")
        prop.data.read = True
        prop.data.write = False

        accessors = prop.read_accessors
        assert accessors.get.path == "demo/a.get"
        assert accessors.get.role is Role.CONTEXTIFY
        assert accessors.get.call.allow() is True
        assert accessors.set.call.allow() is False

    def test_write_accessors(self, learning_policy: Policy) -> None:
        """Accessors defined onto the original face the other way."""
        prop = learning_policy.get_contextify_entity_policy("demo").get_property("a")
        prop.data.read = False
        prop.data.write = True

        accessors = prop.write_accessors
        assert accessors.get.role is Role.DECONTEXTIFY
        assert accessors.get.call.allow() is True
        assert accessors.set.call.allow() is False


# =============================================================================
# Call Policy Tests
# =============================================================================


class TestCallPolicy:
    """Tests for call and construct policies."""

    def test_guard(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """A guard decides each invocation."""
        policy = strict(write_policy, policy_root, f={"call": {"allow": "lambda n: n > 0"}})
        call = policy.get_contextify_entity_policy("f").call
        assert call.allow(None, 1) is True
        assert call.allow(None, -1) is False

    def test_guard_sees_receiver(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Guards receive the receiver first when there is one."""
        policy = strict(write_policy, policy_root, f={"call": {"allow": "lambda this, n: this == 'self' and n == 1"}})
        call = policy.get_contextify_entity_policy("f").call
        assert call.allow("self", 1) is True

    def test_construct_guard_sees_arguments(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Construct guards see only the arguments."""
        policy = strict(write_policy, policy_root, C={"construct": {"allow": "lambda *args, **kw: args == (1,) and kw == {'x': 2}"}})
        construct = policy.get_contextify_entity_policy("C").construct
        assert construct.allow(1, x=2) is True
        assert construct.allow(2) is False

    def test_guard_with_parameter(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Guards read policy parameters through param()."""
        write_policy(
            {"options": {"learn": False}, "parameters": {"user": "alice"}},
            f={"call": {"allow": "lambda name: name == param('user')"}},
        )
        policy = Policy(policy_root, write_delay=60)
        call = policy.get_contextify_entity_policy("f").call
        assert call.allow(None, "alice") is True
        assert call.allow(None, "bob") is False

    def test_failing_guard_is_fatal(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """A guard that raises is a GuardFailedError."""
        policy = strict(write_policy, policy_root, f={"call": {"allow": "lambda n: 1 / n"}})
        call = policy.get_contextify_entity_policy("f").call
        with pytest.raises(GuardFailedError) as exc_info:
            call.allow(None, 0)
        assert "ZeroDivisionError" in exc_info.value.underlying_error

    def test_invalid_guard_is_fatal(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """A guard that does not compile is a PolicyError, even in silent mode."""
        policy = strict(write_policy, policy_root, onerror="silent", f={"call": {"allow": "yes please"}})
        with pytest.raises(PolicyError):
            policy.get_contextify_entity_policy("f").call.allow()

    def test_sub_policy_roles(self, learning_policy: Policy) -> None:
        """Receivers and arguments flip the role; results keep it."""
        call = learning_policy.get_contextify_entity_policy("f").call
        assert call.this_arg.role is Role.DECONTEXTIFY
        assert call.result.role is Role.CONTEXTIFY
        assert call.arguments(0, ()).role is Role.DECONTEXTIFY
        assert call.keyword("mode").role is Role.DECONTEXTIFY

    def test_argument_paths(self, learning_policy: Policy) -> None:
        """Argument policies are addressed by index and keyword name."""
        call = learning_policy.get_contextify_entity_policy("f").call
        assert call.arguments(2, ()).path == "f[2]"
        assert call.keyword("mode").path == "f[mode]"

    def test_arguments_padded(self, learning_policy: Policy) -> None:
        """Asking for a later index fills the earlier slots."""
        call = learning_policy.get_contextify_entity_policy("f").call
        call.arguments(2, ())
        assert len(call.data.arguments) == 3
        assert call.data.arguments[0] is None
        assert isinstance(call.data.arguments[2], EntityPolicyData)


# =============================================================================
# Argument Rule Tests
# =============================================================================


class TestArgumentRules:
    """Tests for conditional argument policies."""

    RULES = {
        "call": {
            "allow": True,
            "arguments": [
                [
                    {"dependency": 1, "expected": "r", "policy": {"override": "expose"}},
                    {"dependency": 1, "expected": 1, "policy": {"override": "protect"}},
                ]
            ],
        }
    }

    def test_matching_rule(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """The first rule whose dependency matches wins."""
        policy = strict(write_policy, policy_root, f=self.RULES)
        call = policy.get_contextify_entity_policy("f").call
        assert call.arguments(0, ("path", "r")).override is Override.EXPOSE
        assert call.arguments(0, ("path", 1)).override is Override.PROTECT

    def test_strict_comparison(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """True does not match an expected 1."""
        policy = strict(write_policy, policy_root, f=self.RULES)
        call = policy.get_contextify_entity_policy("f").call
        assert call.arguments(0, ("path", True)).override is Override.NONE

    def test_catch_all_appended(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """When no rule matches, an unconditional rule is appended and reused."""
        policy = strict(write_policy, policy_root, f=self.RULES)
        call = policy.get_contextify_entity_policy("f").call
        first = call.arguments(0, ("path", "w"))
        rules = call.data.arguments[0]
        assert len(rules) == 3
        assert rules[2].unconditional

        second = call.arguments(0, ("path", "x"))
        assert second.data is first.data
        assert len(rules) == 3


# =============================================================================
# Violation Tests
# =============================================================================


class TestViolations:
    """Tests for reporting denied actions."""

    def test_warn_logs(
        self, write_policy: Callable[..., Path], policy_root: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Warn mode logs each denial."""
        policy = strict(write_policy, policy_root)
        prop = policy.get_contextify_entity_policy("demo").get_property("a")
        with caplog.at_level(logging.WARNING):
            prop.read
            prop.read
        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["Policy Violation: Read action on path demo/a denied."] * 2

    def test_throw_raises(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """Throw mode raises PolicyViolationError."""
        policy = strict(write_policy, policy_root, onerror="throw")
        with pytest.raises(PolicyViolationError) as exc_info:
            policy.get_contextify_entity_policy("demo").get_property("a").write
        assert exc_info.value.path == "demo/a"
        assert exc_info.value.action == "write"

    def test_silent(
        self, write_policy: Callable[..., Path], policy_root: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Silent mode reports nothing."""
        policy = strict(write_policy, policy_root, onerror="silent")
        with caplog.at_level(logging.WARNING):
            assert policy.get_contextify_entity_policy("f").call.allow() is False
        assert caplog.records == []

    def test_onerror_override(self, write_policy: Callable[..., Path], policy_root: Path) -> None:
        """The onerror mode can be overridden at construction."""
        write_policy({"options": {"learn": False}, "onerror": "silent"})
        policy = Policy(policy_root, write_delay=60, onerror="throw")
        assert policy.onerror is OnError.THROW
        with pytest.raises(PolicyViolationError):
            policy.get_contextify_entity_policy("f").call.allow()
