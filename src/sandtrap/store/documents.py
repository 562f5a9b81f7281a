"""
JSON document storage for the SandTrap policy forest.

The forest is one root document (<root>/<name>.json) plus one sub-document
per manifest entry. Everything is loaded eagerly at startup and written back
as a whole after a quiet period following the last invalidation.

Design Principles:
    - Fail fast on load: a missing or invalid referenced document is fatal
    - Debounced write-back: any number of invalidations within the delay
      coalesce into a single write of the whole forest
    - Deterministic output: pretty-printed, key-sorted JSON
    - Contained paths: manifest ids are escaped segment by segment and
      manifest paths are checked to stay under the policy root

Durability:
    The write-back timer runs on a daemon thread. A write that is still
    scheduled when the process exits is lost; call flush() (or close()) when
    the latest decisions must reach the disk.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from sandtrap.errors import PolicyLoadError, PolicyWriteError
from sandtrap.schema import (
    EntityPolicyData,
    PolicyDocument,
    load_entity_policy,
    load_policy_document,
    to_json,
)

logger = logging.getLogger(__name__)

# Default quiescence delay before write-back, in seconds
DEFAULT_WRITE_DELAY = 0.05


def id_to_path(document_id: str) -> str:
    """
    Map a sub-document id to a path relative to the policy root.

    Each slash-separated segment is percent-escaped; empty segments are
    dropped and dot segments are escaped so the result never leaves the root.

    Example:
        >>> id_to_path("demo/a")
        'demo/a.json'
        >>> id_to_path("../etc/passwd")
        '%2E%2E/etc/passwd.json'
    """
    segments = []
    for segment in document_id.split("/"):
        if not segment:
            continue
        escaped = quote(segment, safe="")
        if escaped in (".", ".."):
            escaped = escaped.replace(".", "%2E")
        segments.append(escaped)

    if not segments:
        segments = ["%2F"]

    return "/".join(segments) + ".json"


class PolicyStore:
    """
    Owns the in-memory policy forest and its files.

    Usage:
        store = PolicyStore(root=Path("policies"), name="app")
        data = store.get_entity_data("global")
        store.invalidate()   # schedules a write-back
        store.flush()        # or write now

    Or use as context manager, which flushes pending writes on exit:
        with PolicyStore(root) as store:
            ...

    Attributes:
        root: Directory holding the documents
        name: Root document name (without .json)
        write_delay: Seconds of quiet before a scheduled write-back
        document: The root policy document
        lock: Re-entrant lock guarding the forest against the write-back thread
    """

    def __init__(
        self,
        root: str | Path,
        name: str = "policy",
        write_delay: float = DEFAULT_WRITE_DELAY,
    ) -> None:
        """
        Load the forest from disk.

        Args:
            root: Directory holding the policy documents
            name: Name of the root document (without .json)
            write_delay: Quiescence delay before write-back, in seconds

        Raises:
            PolicyLoadError: If any document is missing or invalid
        """
        self.root = Path(root)
        self.name = name
        self.write_delay = write_delay
        self.document = PolicyDocument()
        self.lock = threading.RLock()

        self._entities: dict[str, EntityPolicyData] = {}
        self._timer: threading.Timer | None = None
        self._writes = 0

        self.load()

    @property
    def document_path(self) -> Path:
        """Path of the root document."""
        return self.root / f"{self.name}.json"

    @property
    def pending(self) -> bool:
        """Whether a write-back is scheduled."""
        with self.lock:
            return self._timer is not None

    @property
    def writes(self) -> int:
        """Number of completed write-backs."""
        return self._writes

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self) -> None:
        """
        Load the root document and every manifest-referenced sub-document.

        A missing root document starts from defaults and schedules a write so
        the policy root is initialised.

        Raises:
            PolicyLoadError: If any document is missing or invalid
        """
        document_path = self.document_path

        if document_path.exists():
            self.document = self._read(document_path, load_policy_document)
        else:
            logger.debug("No policy document at %s, starting from defaults", document_path)
            self.document = PolicyDocument()
            self.invalidate()

        entities: dict[str, EntityPolicyData] = {}
        for document_id, relative in self.document.manifest.items():
            file_path = self._resolve(relative)
            entities[document_id] = self._read(file_path, load_entity_policy)

        with self.lock:
            self._entities = entities

        logger.debug(
            "Loaded policy %s with %d sub-documents", document_path, len(entities)
        )

    def _read(self, file_path: Path, loader: Any) -> Any:
        """Read one document, wrapping every failure in PolicyLoadError."""
        try:
            return loader(file_path)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise PolicyLoadError(file_path=str(file_path), underlying_error=str(e)) from e

    def _resolve(self, relative: str) -> Path:
        """Resolve a manifest path, refusing anything outside the root."""
        root = self.root.resolve()
        file_path = (root / relative).resolve()
        if not file_path.is_relative_to(root):
            raise PolicyLoadError(
                file_path=relative,
                underlying_error="manifest path escapes the policy root",
            )
        return file_path

    # =========================================================================
    # Sub-documents
    # =========================================================================

    def get_entity_data(self, document_id: str) -> EntityPolicyData | None:
        """Return the sub-document registered under an id, if any."""
        with self.lock:
            return self._entities.get(document_id)

    def set_entity_data(self, document_id: str, data: EntityPolicyData) -> None:
        """Place a sub-document in the forest (not yet in the manifest)."""
        with self.lock:
            self._entities[document_id] = data

    def has_entity_data(self, document_id: str) -> bool:
        """Whether a sub-document exists for an id."""
        with self.lock:
            return document_id in self._entities

    def entities(self) -> dict[str, EntityPolicyData]:
        """Snapshot of every sub-document, keyed by id."""
        with self.lock:
            return dict(self._entities)

    def register_in_manifest(self, document_id: str) -> None:
        """Record a sub-document in the manifest and schedule a write."""
        with self.lock:
            if document_id in self.document.manifest:
                return
            self.document.manifest[document_id] = id_to_path(document_id)
        self.invalidate()

    # =========================================================================
    # Write-back
    # =========================================================================

    def invalidate(self) -> None:
        """
        Mark the forest dirty and (re)start the write-back timer.

        The write happens write_delay seconds after the most recent call.
        """
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
            else:
                logger.debug(
                    "Policy %s invalidated; write to disk scheduled in %.0f ms",
                    self.name,
                    self.write_delay * 1000,
                )
            self._timer = threading.Timer(self.write_delay, self._write_back)
            self._timer.daemon = True
            self._timer.start()

    def _write_back(self) -> None:
        """Timer callback."""
        try:
            self.flush()
        except PolicyWriteError:
            logger.error("Write-back of policy %s failed", self.name, exc_info=True)

    def flush(self) -> None:
        """
        Write the whole forest now, cancelling any scheduled write-back.

        Raises:
            PolicyWriteError: If a document cannot be written
        """
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            files = self._snapshot()

        for file_path, content in files:
            try:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                file_path.write_text(content, encoding="utf-8")
            except OSError as e:
                raise PolicyWriteError(file_path=str(file_path), underlying_error=str(e)) from e

        self._writes += 1
        logger.debug("Done writing policy %s to disk (%d files)", self.name, len(files))

    def _snapshot(self) -> list[tuple[Path, str]]:
        """Render every document; caller holds the lock."""
        files = [(self.document_path, to_json(self.document))]
        for document_id, relative in sorted(self.document.manifest.items()):
            data = self._entities.get(document_id)
            if data is None:
                continue
            files.append((self.root / relative, to_json(data)))
        return files

    def close(self) -> None:
        """Flush a pending write-back, if any."""
        if self.pending:
            self.flush()

    def __enter__(self) -> "PolicyStore":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()
