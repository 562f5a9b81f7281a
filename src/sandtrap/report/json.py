"""
JSON report generator for SandTrap.

Summarises a policy forest as structured JSON: the root document's options,
every sub-document in the manifest, and every explicit decision recorded in
the tree (learned or hand-written), keyed by path.

Design Principles:
    - Complete data: Every explicit decision appears, with its document
    - Consistent schema: Same structure for every forest
    - Paths match the ones in violation messages
"""

import json
from collections import Counter
from collections.abc import Iterator
from dataclasses import asdict, dataclass
from typing import Any

from sandtrap.schema import CallPolicyData, EntityPolicyData
from sandtrap.store import PolicyStore


@dataclass
class Decision:
    """
    One explicit decision in the policy tree.

    Attributes:
        document: Id of the sub-document holding it
        path: Path of the value the decision governs
        action: read, write, call or construct
        value: True, False or the source of a guard
    """

    document: str
    path: str
    action: str
    value: bool | str

    @property
    def kind(self) -> str:
        """allowed, denied or guarded."""
        if isinstance(self.value, str):
            return "guarded"
        return "allowed" if self.value else "denied"


def iter_decisions(document: str, data: EntityPolicyData, path: str | None = None) -> Iterator[Decision]:
    """
    Walk an entity policy and yield its explicit decisions.

    Sub-policies stored as string references are not followed; the referenced
    document is walked on its own.
    """
    path = document if path is None else path

    for key, prop in data.properties.items():
        prop_path = f"{path}/{key}"
        if prop.read is not None:
            yield Decision(document, prop_path, "read", prop.read)
        if prop.write is not None:
            yield Decision(document, prop_path, "write", prop.write)
        for sub in (prop.read_policy, prop.write_policy):
            if isinstance(sub, EntityPolicyData):
                yield from iter_decisions(document, sub, prop_path)

    for action in ("call", "construct"):
        call = getattr(data, action)
        if call is not None:
            yield from _iter_call(document, call, action, path)


def _iter_call(document: str, call: CallPolicyData, action: str, path: str) -> Iterator[Decision]:
    if call.allow is not None:
        yield Decision(document, path, action, call.allow)

    for sub in (call.this_arg, call.result):
        if isinstance(sub, EntityPolicyData):
            yield from iter_decisions(document, sub, path)

    for index, slot in enumerate(call.arguments or []):
        arg_path = f"{path}[{index}]"
        if isinstance(slot, EntityPolicyData):
            yield from iter_decisions(document, slot, arg_path)
        elif isinstance(slot, list):
            for rule in slot:
                if isinstance(rule.policy, EntityPolicyData):
                    yield from iter_decisions(document, rule.policy, arg_path)

    for name, slot in (call.keywords or {}).items():
        if isinstance(slot, EntityPolicyData):
            yield from iter_decisions(document, slot, f"{path}[{name}]")


def collect_decisions(store: PolicyStore) -> list[Decision]:
    """Every explicit decision in the forest, ordered by document id."""
    decisions: list[Decision] = []
    for document_id, data in sorted(store.entities().items()):
        decisions.extend(iter_decisions(document_id, data))
    return decisions


def build_report_dict(store: PolicyStore) -> dict[str, Any]:
    """
    Build a report dictionary for a policy forest.

    Args:
        store: The loaded policy forest

    Returns:
        Dictionary with the root document summary, the manifest and every
        explicit decision
    """
    document = store.document
    decisions = collect_decisions(store)
    counts = Counter(decision.kind for decision in decisions)

    return {
        "policy": {
            "name": store.name,
            "path": str(store.document_path),
            "onerror": document.onerror.value,
            "global": document.global_policy,
            "options": document.options.model_dump(mode="json", exclude_none=True),
            "parameters": dict(document.parameters),
        },
        "manifest": dict(sorted(document.manifest.items())),
        "decisions": [asdict(decision) for decision in decisions],
        "summary": {
            "documents": len(document.manifest),
            "decisions": len(decisions),
            "allowed": counts["allowed"],
            "denied": counts["denied"],
            "guarded": counts["guarded"],
        },
    }


def generate_json_report(store: PolicyStore, indent: int = 2) -> str:
    """
    Generate a JSON report for a policy forest.

    Args:
        store: The loaded policy forest
        indent: JSON indentation level (default: 2)

    Returns:
        JSON string with the full report
    """
    return json.dumps(build_report_dict(store), indent=indent)
