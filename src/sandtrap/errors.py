"""
Exception hierarchy for SandTrap.

All SandTrap exceptions inherit from SandTrapError, allowing callers to catch
all sandbox-internal exceptions with a single except clause.

Exception Categories:
    - PolicyError: Malformed or failing guard expressions (always fatal)
    - PolicyViolationError: A denied action under onerror=throw
    - PolicyLoadError / PolicyWriteError: Policy persistence failures
    - VerificationError: Guest source rejected before execution
    - ConfigError: Invalid sandbox configuration

Denied actions are not exceptions. They surface as False/None/absent values
on the membrane and are reported through Policy.report_violation(); only the
"throw" onerror mode turns them into PolicyViolationError.

SandTrapError instances raised while a call is forwarded through the
membrane are never translated into the other realm; they always reach the
host unchanged.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_POLICY_GUARD_INVALID = 1001
ERROR_POLICY_GUARD_FAILED = 1002
ERROR_POLICY_PARAMETER_UNDEFINED = 1003
ERROR_POLICY_VIOLATION = 1004

# Persistence errors: 2xxx
ERROR_POLICY_LOAD = 2001
ERROR_POLICY_WRITE = 2002

# Guest source errors: 3xxx
ERROR_VERIFICATION_FAILED = 3001

# Configuration errors: 4xxx
ERROR_CONFIG_INVALID = 4001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class SandTrapError(Exception):
    """
    Base exception for all SandTrap errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Errors
# =============================================================================


@dataclass
class PolicyError(SandTrapError):
    """
    Raised when a guard expression is malformed, not callable, or fails.

    Guard problems are mistakes of the policy author, not of the guest, so
    they are fatal regardless of the onerror mode.

    Attributes:
        path: Policy path of the call or construct node
        source: The guard source text, if any
    """

    path: str = ""
    source: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid guard on path {self.path}"
        if self.code == 0:
            self.code = ERROR_POLICY_GUARD_INVALID
        if not self.suggestion:
            self.suggestion = "Guards must be a single lambda expression, e.g. 'lambda *args: True'"
        self.context.update({
            "path": self.path,
            "source": self.source,
        })


@dataclass
class GuardFailedError(PolicyError):
    """Raised when evaluating a guard raises."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy Error: guard on path {self.path} resulted in {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_GUARD_FAILED
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class ParameterUndefinedError(PolicyError):
    """Raised when a guard asks for a policy parameter that is not defined."""

    name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy parameter {self.name} is undefined"
        if self.code == 0:
            self.code = ERROR_POLICY_PARAMETER_UNDEFINED
        if not self.suggestion:
            self.suggestion = "Add the parameter to the 'parameters' section of the policy"
        super().__post_init__()
        self.context["name"] = self.name


@dataclass
class PolicyViolationError(SandTrapError):
    """
    Raised for a denied action when the policy's onerror mode is "throw".

    Attributes:
        path: Policy path of the denied action
        action: The denied action (read, write, call, construct, require)
    """

    path: str = ""
    action: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.action} action on path {self.path} denied."
        if self.code == 0:
            self.code = ERROR_POLICY_VIOLATION
        self.context.update({
            "path": self.path,
            "action": self.action,
        })


# =============================================================================
# Persistence Errors
# =============================================================================


@dataclass
class PolicyLoadError(SandTrapError):
    """
    Raised when the policy forest cannot be loaded.

    Attributes:
        file_path: The document that failed to load
        underlying_error: Description of the underlying failure
    """

    file_path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unable to load {self.file_path}, {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_LOAD
        if not self.suggestion:
            self.suggestion = "Fix or remove the document, or drop its entry from the manifest"
        self.context.update({
            "file_path": self.file_path,
            "underlying_error": self.underlying_error,
        })


@dataclass
class PolicyWriteError(SandTrapError):
    """Raised when persisting the policy forest fails."""

    file_path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unable to write {self.file_path}, {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_POLICY_WRITE
        if not self.suggestion:
            self.suggestion = "Check that the policy root is writable"
        self.context.update({
            "file_path": self.file_path,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Guest Source Errors
# =============================================================================


@dataclass
class VerificationError(SandTrapError):
    """
    Raised when guest source contains forbidden constructs.

    Attributes:
        construct: The forbidden construct that was found
        line: Line number of the construct (if known)
    """

    construct: str = ""
    line: int | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            where = f" at line {self.line}" if self.line is not None else ""
            self.message = f"Unsupported instructions: {self.construct}{where}"
        if self.code == 0:
            self.code = ERROR_VERIFICATION_FAILED
        self.context.update({
            "construct": self.construct,
            "line": self.line,
        })


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(SandTrapError):
    """Raised when the sandbox configuration file is invalid."""

    config_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration: {self.config_path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["config_path"] = self.config_path
