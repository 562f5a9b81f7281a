"""
Guard expressions for call and construct policies.

A guard is policy-author source text that decides, per invocation, whether a
call or construct is allowed. The language is a single Python lambda:

    "lambda *args: False"
    "lambda this, n: isinstance(n, int) and n < 10"
    "lambda path, mode='r': mode == 'r' and path.startswith(param('data_dir'))"

Security Note:
    Guards are trusted policy, not guest code, but they are still compiled in
    a closed namespace: a small table of pure builtins plus param(). They do
    not see the module or caller scope, and dunder names/attributes are
    rejected when parsing.
"""

import ast
import builtins
from collections.abc import Callable
from typing import Any

from sandtrap.errors import PolicyError

# Builtins visible to guards
GUARD_BUILTINS: tuple[str, ...] = (
    "abs",
    "all",
    "any",
    "bool",
    "bytes",
    "callable",
    "dict",
    "float",
    "frozenset",
    "int",
    "isinstance",
    "len",
    "list",
    "max",
    "min",
    "set",
    "sorted",
    "str",
    "sum",
    "tuple",
)


def _check_guard_ast(tree: ast.Expression, source: str, path: str) -> None:
    """Reject anything but a lone lambda free of dunder access."""
    if not isinstance(tree.body, ast.Lambda):
        raise PolicyError(
            path=path,
            source=source,
            message=f"Function guards must be lambda expressions, got {type(tree.body).__name__}",
        )

    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise PolicyError(
                path=path,
                source=source,
                message=f"Guard on path {path} accesses private attribute {node.attr}",
            )
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise PolicyError(
                path=path,
                source=source,
                message=f"Guard on path {path} references {node.id}",
            )


def compile_guard(
    source: str,
    path: str = "",
    param: Callable[[str], str] | None = None,
) -> Callable[..., Any]:
    """
    Compile guard source into a predicate.

    Args:
        source: The lambda source text
        path: Policy path of the guarded node (for error messages)
        param: Lookup for policy parameters, exposed to the guard as param()

    Returns:
        The compiled predicate

    Raises:
        PolicyError: If the source is not a valid guard
    """
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as e:
        raise PolicyError(
            path=path,
            source=source,
            message=f"Guard on path {path} is not valid Python: {e.msg}",
        ) from e

    _check_guard_ast(tree, source, path)

    namespace: dict[str, Any] = {
        "__builtins__": {name: getattr(builtins, name) for name in GUARD_BUILTINS},
    }
    if param is not None:
        namespace["param"] = param

    code = compile(tree, f"<guard {path}>", "eval")
    fun = eval(code, namespace)  # noqa: S307 - closed namespace, validated AST

    if not callable(fun):
        raise PolicyError(
            path=path,
            source=source,
            message=f"Function guards must be functions, got {fun!r}",
        )

    return fun


class GuardCache:
    """
    Compiled guards, one per distinct source text.

    Every guard shares one param() lookup, which reads the policy
    parameters when the guard runs.
    """

    def __init__(self, param: Callable[[str], str]) -> None:
        self._param = param
        self._compiled: dict[str, Callable[..., Any]] = {}

    def get(self, source: str, path: str = "") -> Callable[..., Any]:
        """Return the compiled guard for a source text, compiling it once."""
        fun = self._compiled.get(source)
        if fun is None:
            fun = compile_guard(source, path, self._param)
            self._compiled[source] = fun
        return fun

    def __len__(self) -> int:
        return len(self._compiled)
