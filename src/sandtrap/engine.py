"""
Sandbox orchestration for SandTrap.

A SandTrap owns one policy forest, one membrane and one guest namespace. It
coordinates between:
- Source verification: Rejects forbidden constructs before anything runs
- Membrane: Translates every value crossing between host and guest
- Policy: Decides every crossing and learns new decisions

Execution Flow:
    1. Verify the guest source
    2. Run it in the guest namespace (the value of a trailing expression
       statement is the result)
    3. Decontextify the result (or the raised exception) for the host
    4. Policy decisions learned along the way are written back after a
       short quiet period, or on close()

Design Principles:
    - Nothing host-side is reachable from the guest except through the
      membrane, require() and the exposed names
    - One policy forest per sandbox; sandboxes do not share state
    - SandTrap errors (violations in throw mode, guard errors) always reach
      the host unchanged
"""

import ast
import importlib
import logging
import types
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from sandtrap.config import SandboxConfig
from sandtrap.errors import SandTrapError
from sandtrap.membrane import Descriptor, Membrane
from sandtrap.policy import Policy
from sandtrap.schema import OnError
from sandtrap.store import DEFAULT_WRITE_DELAY
from sandtrap.validation import verify

logger = logging.getLogger(__name__)

# Default policy name for values returned by eval()
EVAL_POLICY = "sandtrap.eval"


class SandTrap:
    """
    A sandbox for running guest code against host objects.

    Usage:
        with SandTrap("policies") as sandbox:
            sandbox.expose("data", {"a": 1})
            sandbox.eval("data['a'] + 1")   # 2

    Attributes:
        policy: The policy forest of this sandbox
        membrane: The membrane between host and guest
        namespace: The guest's global namespace
        source_root: Directory that load() names policies relative to
    """

    def __init__(
        self,
        root: str | Path,
        name: str = "policy",
        write_delay: float = DEFAULT_WRITE_DELAY,
        onerror: OnError | str | None = None,
        expose: Iterable[str] = ("print",),
        source_root: str | Path | None = None,
        prompt: Callable[..., bool] | None = None,
    ) -> None:
        """
        Create a sandbox.

        Args:
            root: Directory holding the policy documents
            name: Name of the root policy document (without .json)
            write_delay: Quiescence delay before policy write-back, in seconds
            onerror: Override of the policy's onerror mode
            expose: Host builtins to contextify into the guest namespace
            source_root: Directory load() names policies relative to
                (default: the working directory)
            prompt: Operator prompt used by interactive policies

        Raises:
            PolicyLoadError: If the policy forest cannot be loaded
        """
        self.policy = Policy(root, name=name, write_delay=write_delay, onerror=onerror, prompt=prompt)
        self.membrane = Membrane(self.policy)
        self.source_root = Path(source_root) if source_root is not None else Path.cwd()
        self.namespace = self.membrane.guest.namespace(
            require=self._make_require(),
            eval=self._make_eval(),
        )

        for builtin in expose:
            self.expose_global(builtin)

    @classmethod
    def from_config(cls, config: SandboxConfig, **kwargs: Any) -> "SandTrap":
        """Create a sandbox from a loaded sandtrap.yaml."""
        return cls(
            config.policy_root,
            name=config.policy_name,
            write_delay=config.write_delay,
            onerror=config.onerror,
            expose=config.expose,
            **kwargs,
        )

    def close(self) -> None:
        """Write back pending policy decisions."""
        self.policy.close()

    def __enter__(self) -> "SandTrap":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Guest Namespace
    # =========================================================================

    def expose(self, name: str, value: Any) -> Any:
        """
        Contextify a host value into the guest namespace.

        The value gets its own top-level policy document, named after it.

        Returns:
            The guest-side value
        """
        guest_value = self.membrane.contextify(value, name)
        self.namespace[name] = guest_value
        return guest_value

    def expose_global(self, name: str) -> bool:
        """
        Contextify a host builtin into the guest namespace.

        The builtin is governed by the property of the same name on the
        global policy; a denied read leaves it out.

        Returns:
            Whether the builtin was exposed

        Raises:
            SandTrapError: If no such host builtin exists
        """
        builtins = self.membrane.host.builtins
        if name not in builtins:
            raise SandTrapError(message=f"SandTrap: {name} not defined on the host builtins")

        prop = self.policy.global_policy.get_property(name)
        if not prop.read:
            return False

        desc = self.membrane.contextify_descriptor(
            Descriptor(value=builtins[name]), name, prop.read_policy, prop.read_accessors
        )
        self.namespace[name] = desc.value
        return True

    def _make_require(self) -> Callable[[str], Any]:
        def require(module_id: str) -> Any:
            """Import a host module, if the policy allows it."""
            if not isinstance(module_id, str):
                raise TypeError("require() takes a module name")
            return self.require(module_id)

        return require

    def _make_eval(self) -> Callable[[str], Any]:
        def guest_eval(source: str) -> Any:
            """Run more guest source in the same namespace."""
            if not isinstance(source, str):
                raise TypeError("eval() takes source text")
            return self._run(source, "<guest eval>")

        guest_eval.__name__ = "eval"
        return guest_eval

    def require(self, module_id: str) -> Any:
        """
        Import a host module for the guest.

        Returns:
            The contextified module, or an empty object when the policy
            refuses it (the refusal is reported as a violation)
        """
        policy = self.policy.require(module_id)
        if policy is None:
            self.policy.report_violation(
                f"Require action on path {module_id} denied.",
                path=module_id,
                action="require",
            )
            return types.SimpleNamespace()

        module = importlib.import_module(module_id)
        logger.debug("Required host module %s", module_id)
        return self.membrane.contextify(module, module_id, policy)

    # =========================================================================
    # Running Guest Code
    # =========================================================================

    def _run(self, source: str, filename: str) -> Any:
        """Verify and run source in the guest namespace; return the raw result."""
        tree = verify(source, filename)

        result_expr = None
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            result_expr = ast.Expression(body=tree.body.pop().value)
            ast.fix_missing_locations(result_expr)

        exec(compile(tree, filename, "exec"), self.namespace)  # noqa: S102 - verified guest source
        if result_expr is None:
            return None
        return eval(compile(result_expr, filename, "eval"), self.namespace)  # noqa: S307

    def eval(self, code: str, policy_name: str | None = None) -> Any:
        """
        Run guest source and return its result to the host.

        Args:
            code: Guest source; the value of a trailing expression statement
                is the result
            policy_name: Policy document for the result (default:
                "sandtrap.eval")

        Returns:
            The decontextified result

        Raises:
            VerificationError: If the source contains forbidden constructs
            SandTrapError: Policy errors and violations (in throw mode)
            Exception: What the guest raised, decontextified
        """
        name = policy_name or EVAL_POLICY
        policy = self.policy.get_decontextify_entity_policy(name)

        error = None
        try:
            result = self._run(code, f"<{name}>")
        except SandTrapError:
            raise
        except Exception as e:
            error = e

        if error is not None:
            raise self.membrane.decontextify(error, f"{name}.exception") from None

        return self.membrane.decontextify(result, name, policy)

    def load(self, filename: str | Path) -> Any:
        """
        Run a guest source file.

        The result policy is named after the file, relative to source_root
        when the file lies under it.
        """
        path = Path(filename)
        code = path.read_text(encoding="utf-8")

        try:
            policy_name = path.resolve().relative_to(self.source_root.resolve()).as_posix()
        except ValueError:
            policy_name = path.as_posix()

        return self.eval(code, policy_name)
