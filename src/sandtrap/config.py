"""
Sandbox configuration.

A sandbox is configured by an optional sandtrap.yaml file:

    policy_root: policies        # directory holding the policy documents
    policy_name: policy          # root document name (policies/policy.json)
    write_delay_ms: 50           # quiet period before policy write-back
    onerror: warn                # override the document's onerror mode
    expose:                      # host builtins exposed to guest code
      - print

Relative paths are resolved against the directory of the config file.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sandtrap.errors import ConfigError
from sandtrap.schema import OnError

# Default config file name, looked up in the working directory
CONFIG_FILENAME = "sandtrap.yaml"


class SandboxConfig(BaseModel):
    """
    Settings for one sandbox.

    Attributes:
        policy_root: Directory holding the policy documents
        policy_name: Name of the root policy document (without .json)
        write_delay_ms: Quiescence delay before write-back, in milliseconds
        onerror: Overrides the policy document's onerror mode when set
        expose: Host builtins contextified into the guest namespace
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_root: Path = Field(default=Path("policies"))
    policy_name: str = Field(default="policy", min_length=1)
    write_delay_ms: int = Field(default=50, ge=0)
    onerror: OnError | None = None
    expose: list[str] = Field(default_factory=lambda: ["print"])

    @property
    def write_delay(self) -> float:
        """Write delay in seconds."""
        return self.write_delay_ms / 1000


def load_config(path: Path | str | None = None) -> SandboxConfig:
    """
    Load the sandbox configuration.

    Args:
        path: Config file to load. Defaults to sandtrap.yaml in the working
            directory; when that does not exist, built-in defaults are used.

    Returns:
        The validated configuration

    Raises:
        ConfigError: If the file is missing (when given explicitly) or invalid
    """
    if path is None:
        path = Path.cwd() / CONFIG_FILENAME
        if not path.exists():
            return SandboxConfig()

    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            data: Any = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(config_path=str(path), message=f"Unable to read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(config_path=str(path), message=f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(config_path=str(path), message=f"{path} must contain a mapping")

    try:
        config = SandboxConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            config_path=str(path),
            message=f"Invalid configuration in {path}",
            suggestion=str(e),
        ) from e

    if not config.policy_root.is_absolute():
        config = config.model_copy(update={"policy_root": path.parent / config.policy_root})
    return config
