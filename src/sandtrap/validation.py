"""
Guest source verification.

Guest source is parsed and checked before it is run. Rejected constructs:
    - import statements (modules come from require(), which is policy-gated)
    - names and attributes beginning with a double underscore, which would
      reach interpreter internals behind the membrane's back
    - global and nonlocal statements

Verification is a static check on the syntax tree; it does not execute
anything.
"""

import ast
from dataclasses import dataclass, field

from sandtrap.errors import VerificationError


@dataclass
class Finding:
    """
    One forbidden construct.

    Attributes:
        construct: Description of the construct
        line: Line number in the source
    """

    construct: str
    line: int | None = None

    def __str__(self) -> str:
        if self.line is None:
            return self.construct
        return f"{self.construct} (line {self.line})"


@dataclass
class VerificationResult:
    """
    Result of verifying guest source.

    Attributes:
        tree: The parsed module (None when the source does not parse)
        findings: Forbidden constructs, in source order
    """

    tree: ast.Module | None = None
    findings: list[Finding] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.tree is not None and not self.findings


class _Verifier(ast.NodeVisitor):
    def __init__(self) -> None:
        self.findings: list[Finding] = []

    def _report(self, construct: str, node: ast.AST) -> None:
        self.findings.append(Finding(construct, getattr(node, "lineno", None)))

    def visit_Import(self, node: ast.Import) -> None:
        names = ", ".join(alias.name for alias in node.names)
        self._report(f"import {names}", node)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._report(f"from {node.module or '.'} import", node)

    def visit_Global(self, node: ast.Global) -> None:
        self._report("global statement", node)
        self.generic_visit(node)

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._report("nonlocal statement", node)
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._report(f"name {node.id}", node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("__"):
            self._report(f"attribute {node.attr}", node)
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        if node.name.startswith("__"):
            self._report(f"function {node.name}", node)
        self.generic_visit(node)

    visit_AsyncFunctionDef = visit_FunctionDef  # type: ignore[assignment]

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        if node.name.startswith("__"):
            self._report(f"class {node.name}", node)
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        if node.arg.startswith("__"):
            self._report(f"argument {node.arg}", node)
        self.generic_visit(node)

    def visit_keyword(self, node: ast.keyword) -> None:
        if node.arg is not None and node.arg.startswith("__"):
            self._report(f"keyword {node.arg}", node)
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name is not None and node.name.startswith("__"):
            self._report(f"name {node.name}", node)
        self.generic_visit(node)

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        if node.name is not None and node.name.startswith("__"):
            self._report(f"name {node.name}", node)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        if node.name is not None and node.name.startswith("__"):
            self._report(f"name {node.name}", node)
        self.generic_visit(node)


def check_source(source: str, filename: str = "<guest>") -> VerificationResult:
    """
    Parse and check guest source without raising.

    A syntax error is reported as a finding with no tree.
    """
    try:
        tree = ast.parse(source, filename=filename, mode="exec")
    except SyntaxError as e:
        return VerificationResult(findings=[Finding(f"syntax error: {e.msg}", e.lineno)])

    verifier = _Verifier()
    verifier.visit(tree)
    return VerificationResult(tree=tree, findings=verifier.findings)


def verify(source: str, filename: str = "<guest>") -> ast.Module:
    """
    Check guest source, raising on the first forbidden construct.

    Returns:
        The parsed module

    Raises:
        VerificationError: If the source does not parse or is forbidden
    """
    result = check_source(source, filename)
    if not result.is_valid:
        finding = result.findings[0]
        raise VerificationError(construct=finding.construct, line=finding.line)
    return result.tree
