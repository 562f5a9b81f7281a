"""
Pytest configuration and fixtures for SandTrap tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import json
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import pytest

from sandtrap.engine import SandTrap
from sandtrap.store import id_to_path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def policy_root(temp_dir: Path) -> Path:
    """Directory for policy documents (not created yet)."""
    return temp_dir / "policies"


@pytest.fixture
def write_policy(policy_root: Path) -> Callable[..., Path]:
    """
    Return a function writing a policy forest to policy_root.

    Usage:
        write_policy({"options": {"learn": False}}, data={"properties": {...}})

    Sub-documents are registered in the manifest automatically.
    """

    def write(document: dict[str, Any] | None = None, name: str = "policy", **entities: Any) -> Path:
        document = dict(document or {})
        manifest = dict(document.get("manifest", {}))
        policy_root.mkdir(parents=True, exist_ok=True)

        for document_id, data in entities.items():
            relative = id_to_path(document_id)
            manifest[document_id] = relative
            file_path = policy_root / relative
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(json.dumps(data), encoding="utf-8")

        document["manifest"] = manifest
        document_path = policy_root / f"{name}.json"
        document_path.write_text(json.dumps(document), encoding="utf-8")
        return document_path

    return write


@pytest.fixture
def read_policy(policy_root: Path) -> Callable[[str], dict[str, Any]]:
    """Return a function reading a written policy document by id."""

    def read(document_id: str) -> dict[str, Any]:
        path = policy_root / id_to_path(document_id)
        return json.loads(path.read_text(encoding="utf-8"))

    return read


@pytest.fixture
def sandbox(policy_root: Path) -> Generator[SandTrap, None, None]:
    """A learning sandbox with a fresh policy root."""
    trap = SandTrap(policy_root, source_root=policy_root.parent)
    yield trap
    trap.close()


@pytest.fixture
def strict_document() -> dict[str, Any]:
    """A root document that denies everything not in the tree."""
    return {"options": {"learn": False}, "onerror": "warn"}
