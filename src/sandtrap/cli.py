"""
CLI entry point for SandTrap.

This module provides the Typer-based command-line interface for SandTrap.

Commands:
    run           Run a guest source file in the sandbox
    eval          Evaluate guest source given on the command line
    verify        Check guest source for forbidden constructs without running it
    policy show   Show the decisions recorded in a policy forest
    policy check  Load a policy forest and compile every guard

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to
    SandTrap for actual execution, so everything here is also available
    programmatically.
"""

import json
import logging
import traceback
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from sandtrap import __version__
from sandtrap.config import SandboxConfig, load_config
from sandtrap.engine import SandTrap
from sandtrap.errors import ParameterUndefinedError, SandTrapError
from sandtrap.policy import compile_guard
from sandtrap.report import collect_decisions, generate_console_report, generate_json_report
from sandtrap.schema import OnError
from sandtrap.store import PolicyStore
from sandtrap.validation import check_source

# Initialize Typer app with metadata
app = typer.Typer(
    name="sandtrap",
    help="Run untrusted Python against host objects through a policy membrane.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich consoles for formatted output; logs go to stderr
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]sandtrap[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    SandTrap - A policy membrane between host and guest code.

    Every value crossing the membrane is governed by a JSON policy tree,
    which can be learned from real runs and then reviewed and tightened.
    """
    pass


# =============================================================================
# Shared Options
# =============================================================================

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to sandtrap.yaml. Defaults to sandtrap.yaml in the current directory.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
PolicyRootOption = Annotated[
    Optional[Path],
    typer.Option(
        "--policy-root",
        "-p",
        help="Directory holding the policy documents (overrides the config).",
        resolve_path=True,
    ),
]
PolicyNameOption = Annotated[
    Optional[str],
    typer.Option(
        "--policy-name",
        "-n",
        help="Name of the root policy document, without .json (overrides the config).",
    ),
]
OnErrorOption = Annotated[
    Optional[OnError],
    typer.Option(
        "--onerror",
        help="How policy violations are reported (overrides the policy document).",
        case_sensitive=False,
    ),
]
ExposeOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--expose",
        "-e",
        help="Host builtin to expose to guest code. Repeatable; replaces the configured list.",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option(
        "--verbose",
        help="Enable verbose output for debugging.",
    ),
]
DebugOption = Annotated[
    bool,
    typer.Option(
        "--debug",
        help="Enable debug mode with full error tracebacks.",
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]


def _configure_logging(verbose: bool, debug: bool = False) -> None:
    """Route log records (policy violations included) through Rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=debug)],
        force=True,
    )


def _resolve_config(
    config_path: Path | None,
    policy_root: Path | None = None,
    policy_name: str | None = None,
    onerror: OnError | None = None,
    expose: list[str] | None = None,
) -> SandboxConfig:
    """Load the config file and apply command-line overrides."""
    config = load_config(config_path)

    updates: dict[str, Any] = {}
    if policy_root is not None:
        updates["policy_root"] = policy_root
    if policy_name is not None:
        updates["policy_name"] = policy_name
    if onerror is not None:
        updates["onerror"] = onerror
    if expose is not None:
        updates["expose"] = expose
    return config.model_copy(update=updates) if updates else config


def _fail(message: str, json_output: bool, error_type: str, debug: bool = False) -> NoReturn:
    if json_output:
        _output_json_error(error_type, message, debug)
    else:
        console.print(f"[red]{escape(message)}[/red]")
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _output_json_error(error_type: str, message: str, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    output = {
        "error": True,
        "error_type": error_type,
        "message": message,
    }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2))


def _display_result(result: Any, json_output: bool) -> None:
    if json_output:
        print(json.dumps({"error": False, "result": result}, indent=2, default=repr))
    elif result is not None:
        console.print(repr(result), markup=False)


def _execute(config: SandboxConfig, verbose: bool, debug: bool, json_output: bool, run: Any) -> None:
    """Open a sandbox, call run(sandbox), report the result and exit."""
    try:
        sandbox = SandTrap.from_config(config, source_root=Path.cwd())
    except SandTrapError as e:
        _fail(f"Error loading policy: {e}", json_output, e.__class__.__name__, debug)

    if verbose and not json_output:
        console.print(f"[dim]Policy: {sandbox.policy.store.document_path}[/dim]")
        console.print(f"[dim]  onerror: {sandbox.policy.onerror.value}[/dim]")

    try:
        with sandbox:
            result = run(sandbox)
            _display_result(result, json_output)
    except SandTrapError as e:
        _fail(str(e), json_output, e.__class__.__name__, debug)
    except Exception as e:
        _fail(f"Guest raised {e!r}: {e}", json_output, "guest_error", debug)


# =============================================================================
# Running Guest Code
# =============================================================================


@app.command()
def run(
    source_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the guest Python source file.",
            exists=True,
            readable=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    config_path: ConfigOption = None,
    policy_root: PolicyRootOption = None,
    policy_name: PolicyNameOption = None,
    onerror: OnErrorOption = None,
    expose: ExposeOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Run a guest source file in the sandbox.

    The value of the file's last expression statement is printed. The
    result's policy is named after the file, relative to the current
    directory.

    Example:
        $ sandtrap run script.py --policy-root policies
    """
    _configure_logging(verbose, debug)
    try:
        config = _resolve_config(config_path, policy_root, policy_name, onerror, expose)
    except SandTrapError as e:
        _fail(f"Error loading config: {e}", json_output, e.__class__.__name__, debug)

    _execute(config, verbose, debug, json_output, lambda sandbox: sandbox.load(source_path))


@app.command("eval")
def eval_command(
    code: Annotated[
        str,
        typer.Argument(help="Guest Python source to evaluate."),
    ],
    config_path: ConfigOption = None,
    policy_root: PolicyRootOption = None,
    policy_name: PolicyNameOption = None,
    onerror: OnErrorOption = None,
    expose: ExposeOption = None,
    verbose: VerboseOption = False,
    debug: DebugOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Evaluate guest source given on the command line.

    Example:
        $ sandtrap eval "sum([1, 2, 3])"
    """
    _configure_logging(verbose, debug)
    try:
        config = _resolve_config(config_path, policy_root, policy_name, onerror, expose)
    except SandTrapError as e:
        _fail(f"Error loading config: {e}", json_output, e.__class__.__name__, debug)

    _execute(config, verbose, debug, json_output, lambda sandbox: sandbox.eval(code))


@app.command()
def verify(
    source_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the guest Python source file.",
            exists=True,
            readable=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    json_output: JsonOption = False,
) -> None:
    """
    Check guest source for forbidden constructs without running it.

    Example:
        $ sandtrap verify script.py
    """
    result = check_source(source_path.read_text(encoding="utf-8"), str(source_path))

    if json_output:
        output = {
            "valid": result.is_valid,
            "findings": [{"construct": f.construct, "line": f.line} for f in result.findings],
        }
        print(json.dumps(output, indent=2))
    elif result.is_valid:
        console.print(f"[green]✓[/green] {source_path.name} passes verification")
    else:
        console.print(f"[red]✗[/red] {source_path.name} has {len(result.findings)} forbidden construct(s):")
        for finding in result.findings:
            console.print(f"  • {escape(str(finding))}")

    if not result.is_valid:
        raise typer.Exit(code=1)


# =============================================================================
# Policy Commands
# =============================================================================

policy_app = typer.Typer(
    name="policy",
    help="Inspect and check policy forests.",
    no_args_is_help=True,
)
app.add_typer(policy_app, name="policy")


def _open_store(config_path: Path | None, policy_root: Path | None, policy_name: str | None) -> PolicyStore:
    """Open an existing policy forest for inspection."""
    try:
        config = _resolve_config(config_path, policy_root, policy_name)
    except SandTrapError as e:
        console.print(f"[red]Error loading config: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    document_path = config.policy_root / f"{config.policy_name}.json"
    if not document_path.exists():
        console.print(f"[red]No policy found at {document_path}[/red]")
        raise typer.Exit(code=1)

    try:
        return PolicyStore(config.policy_root, name=config.policy_name, write_delay=config.write_delay)
    except SandTrapError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)


@policy_app.command("show")
def policy_show(
    config_path: ConfigOption = None,
    policy_root: PolicyRootOption = None,
    policy_name: PolicyNameOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show the decisions recorded in a policy forest.

    Example:
        $ sandtrap policy show --policy-root policies
    """
    store = _open_store(config_path, policy_root, policy_name)

    if json_output:
        print(generate_json_report(store))
    else:
        generate_console_report(store, console=console, verbose=verbose)


@policy_app.command("check")
def policy_check(
    config_path: ConfigOption = None,
    policy_root: PolicyRootOption = None,
    policy_name: PolicyNameOption = None,
) -> None:
    """
    Load a policy forest and compile every guard it contains.

    Exits with status 1 when a guard does not compile.

    Example:
        $ sandtrap policy check --policy-root policies
    """
    store = _open_store(config_path, policy_root, policy_name)
    parameters = store.document.parameters

    def param(name: str) -> str:
        if name not in parameters:
            raise ParameterUndefinedError(name=name)
        return parameters[name]

    guards = [d for d in collect_decisions(store) if isinstance(d.value, str)]
    errors = []
    for decision in guards:
        try:
            compile_guard(decision.value, decision.path, param)
        except SandTrapError as e:
            errors.append((decision, e))

    console.print(f"[bold]Policy:[/bold] {store.document_path}")
    console.print(f"  [dim]Documents:[/dim] {len(store.document.manifest)}")
    console.print(f"  [dim]Guards:[/dim]    {len(guards)}")
    console.print()

    if errors:
        for decision, error in errors:
            console.print(f"[red]✗[/red] {escape(decision.path)} ({decision.action}): {escape(error.message)}")
        raise typer.Exit(code=1)

    console.print("[green]✓[/green] Policy is valid")


if __name__ == "__main__":
    app()
