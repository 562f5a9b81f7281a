"""
Reporting module for SandTrap.

This module summarises a policy forest for humans and for programs.

Output formats:
    - Console: Rich terminal output, one decision table per sub-document
    - JSON: Structured output for programmatic consumption

Example:
    from sandtrap.report import generate_console_report, generate_json_report
    from sandtrap.store import PolicyStore

    store = PolicyStore("policies")
    generate_console_report(store)
    print(generate_json_report(store))
"""

from sandtrap.report.console import generate_console_report
from sandtrap.report.json import (
    Decision,
    build_report_dict,
    collect_decisions,
    generate_json_report,
    iter_decisions,
)

__all__ = [
    "Decision",
    "build_report_dict",
    "collect_decisions",
    "generate_console_report",
    "generate_json_report",
    "iter_decisions",
]
