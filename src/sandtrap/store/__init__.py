"""
Storage module for SandTrap.

This module persists the policy forest as JSON documents under a policy root:

    <root>/<name>.json          root document (options, onerror, manifest)
    <root>/<id>.json            one sub-document per manifest entry

Design principles:
    - Load everything at startup, fail fast on bad documents
    - Write the whole forest back after a quiet period (debounced)
    - Deterministic, diff-friendly output (sorted keys, 2-space indent)

Why plain JSON files?
    - Policies are meant to be read, reviewed and edited by hand
    - One file per sub-document keeps diffs small
    - No server or database needed
"""

from sandtrap.store.documents import DEFAULT_WRITE_DELAY, PolicyStore, id_to_path

__all__ = [
    "DEFAULT_WRITE_DELAY",
    "PolicyStore",
    "id_to_path",
]
