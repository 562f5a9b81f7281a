"""
Policy root for SandTrap.

The Policy owns one persisted policy forest and is the entry point for
every decision the membrane asks for.

Design Principles:
    - Lazily learned: nodes are created on first access and, in learn mode,
      unset decisions are granted and recorded
    - Frozen decisions: once resolved, a decision never changes unless the
      document is edited
    - Explicit ownership: one forest per Policy instance, no process-global
      state
    - Loud denials: every denied evaluation is reported through
      report_violation(), according to the document's onerror mode

How it works:
    1. The membrane asks for the entity policy of a crossing value, either
       by path (get_contextify_entity_policy) or through a parent node
    2. Traps consult read/write/allow on the node
    3. Unset decisions are derived from the nearest configured defaults
    4. Mutations call invalidate(), which schedules a debounced write-back

Security Note:
    Guard expressions are policy-author code. They are compiled in a closed
    namespace (see sandtrap.policy.guards) and any failure while compiling
    or evaluating one is fatal.
"""

import logging
import threading
from functools import cached_property
from pathlib import Path
from typing import Any

from rich.prompt import Confirm

from sandtrap.errors import ParameterUndefinedError, PolicyViolationError
from sandtrap.policy.guards import GuardCache
from sandtrap.policy.nodes import EntityPolicy
from sandtrap.schema import (
    PROCESS_DEFAULTS,
    Action,
    EntityPolicyData,
    OnError,
    PolicyDocument,
    Role,
)
from sandtrap.store import DEFAULT_WRITE_DELAY, PolicyStore

logger = logging.getLogger(__name__)


def confirm_action(role: Role, action: Action, path: str, default: bool) -> bool:
    """Ask the operator whether to grant an action (empty answer = default)."""
    return Confirm.ask(
        f"Allow {role.value} [bold]{action.value}[/bold] action on path [cyan]{path}[/cyan]?",
        default=default,
    )


class Policy:
    """
    A persisted, hierarchical policy forest.

    Usage:
        with Policy("policies", name="demo") as policy:
            entity = policy.get_contextify_entity_policy("demo")
            if entity.get_property("a").read:
                ...

    Attributes:
        store: The document store backing this policy
        guards: Compiled guard cache
        lock: Lock guarding tree mutations against the write-back thread
    """

    def __init__(
        self,
        root: str | Path,
        name: str = "policy",
        write_delay: float = DEFAULT_WRITE_DELAY,
        onerror: OnError | str | None = None,
        prompt: Any = None,
    ) -> None:
        """
        Load a policy forest.

        Args:
            root: Directory holding the policy documents
            name: Name of the root document (without .json)
            write_delay: Quiescence delay before write-back, in seconds
            onerror: Override of the document's onerror mode
            prompt: Callable (role, action, path, default) -> bool used in
                interactive mode (default: a rich confirmation prompt)

        Raises:
            PolicyLoadError: If the forest cannot be loaded
        """
        self.store = PolicyStore(root, name, write_delay)
        self.guards = GuardCache(self.parameter)
        self._onerror = OnError(onerror) if onerror is not None else None
        self._prompt = prompt or confirm_action

    @property
    def document(self) -> PolicyDocument:
        """The root policy document."""
        return self.store.document

    @property
    def lock(self) -> threading.RLock:
        return self.store.lock

    @property
    def onerror(self) -> OnError:
        """How violations are reported."""
        if self._onerror is not None:
            return self._onerror
        return self.document.onerror

    @property
    def throw(self) -> bool:
        return self.onerror is OnError.THROW

    @property
    def warn(self) -> bool:
        return self.onerror is OnError.WARN

    @property
    def silent(self) -> bool:
        return self.onerror is OnError.SILENT

    @property
    def write_delay(self) -> float:
        """Seconds of quiet before a scheduled write-back."""
        return self.store.write_delay

    @write_delay.setter
    def write_delay(self, value: float) -> None:
        self.store.write_delay = value

    @property
    def learning(self) -> bool:
        """Whether the root options are in learn mode."""
        learn = self.document.options.learn
        if learn is None:
            learn = PROCESS_DEFAULTS.learn
        return bool(learn)

    # =========================================================================
    # Entity Policies
    # =========================================================================

    @cached_property
    def global_policy(self) -> EntityPolicy:
        """The contextify policy for the guest's global namespace."""
        document_id = self.document.global_policy
        return EntityPolicy(self, document_id, document_id, Role.CONTEXTIFY)

    def require(self, document_id: str) -> EntityPolicy | None:
        """
        Policy for a host module required by the guest.

        Returns:
            The module's contextify policy, or None when not learning and
            no document exists for it
        """
        if not self.learning and not self.store.has_entity_data(document_id):
            return None
        return EntityPolicy(self, document_id, document_id, Role.CONTEXTIFY)

    def get_contextify_entity_policy(self, path: str) -> EntityPolicy:
        """Top-level policy for a host value crossing into the guest."""
        return EntityPolicy(self, path, path, Role.CONTEXTIFY)

    def get_decontextify_entity_policy(self, path: str) -> EntityPolicy:
        """Top-level policy for a guest value crossing into the host."""
        return EntityPolicy(self, path, path, Role.DECONTEXTIFY)

    def resolve(self, document_id: str, role: Role) -> EntityPolicyData:
        """
        Resolve an indirection to its sub-document.

        A sub-document that does not exist yet is created for the given
        role and registered in the manifest (when learning).
        """
        with self.lock:
            data = self.store.get_entity_data(document_id)
            if data is None:
                logger.debug("Creating %s policy document %s", role.value, document_id)
                data = EntityPolicyData(type=role)
                self.store.set_entity_data(document_id, data)

        if self.learning:
            self.store.register_in_manifest(document_id)
        return data

    # =========================================================================
    # Decisions
    # =========================================================================

    def parameter(self, name: str) -> str:
        """
        Look up a policy parameter (param() inside guards).

        Raises:
            ParameterUndefinedError: If the parameter is not defined
        """
        try:
            return self.document.parameters[name]
        except KeyError:
            raise ParameterUndefinedError(name=name) from None

    def prompt(self, role: Role, action: Action, path: str, default: bool) -> bool:
        """Ask the operator for a decision."""
        return bool(self._prompt(role, action, path, default))

    def report_violation(self, message: str, path: str = "", action: str = "") -> None:
        """
        Report a denied action.

        Raises:
            PolicyViolationError: In throw mode
        """
        if self.silent:
            return
        if self.throw:
            raise PolicyViolationError(message=message, path=path, action=action)
        logger.warning("Policy Violation: %s", message)

    # =========================================================================
    # Persistence
    # =========================================================================

    def invalidate(self) -> None:
        """Schedule a write-back of the forest."""
        self.store.invalidate()

    def flush(self) -> None:
        """Write the forest now."""
        self.store.flush()

    def close(self) -> None:
        """Flush pending writes."""
        self.store.close()

    def __enter__(self) -> "Policy":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()
