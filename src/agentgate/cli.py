"""
CLI entry point for AgentGate.

This module provides the Typer-based command-line interface for managing
policy packs and running checkpoint evaluations against a local database.

Commands:
    pack        Create, update, list, show and archive policy packs
    template    Browse the template library and instantiate templates
    evaluate    Evaluate a pack against an input file
    check       Run the bid, assignment, tool and batch checkpoints
    violations  List recent denials for an agent
    compliance  Show an agent's compliance rate

Architecture Note:
    The CLI is thin: it parses arguments, opens the database named by
    --db or the config file, and delegates to GateDB, PolicyGate and
    DecisionLog.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from agentgate import __version__
from agentgate.audit import DecisionLog
from agentgate.config import GateConfig, load_config
from agentgate.errors import AgentGateError
from agentgate.facts import InMemoryFacts
from agentgate.gate import PolicyGate
from agentgate.policy import PolicyEngine, validate_rules
from agentgate.schema import (
    CheckpointResult,
    DecisionOutcome,
    PolicyDecision,
    PolicyPack,
    load_input,
    load_rules,
)
from agentgate.store import GateDB
from agentgate.templates import default_catalog

app = typer.Typer(
    name="agentgate",
    help="Policy decisions for agent marketplace checkpoints.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]agentgate[/bold] version {__version__}")
        raise typer.Exit()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
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
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to a YAML config file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging."),
    ] = False,
) -> None:
    """
    AgentGate - Policy decision engine for AI-agent marketplaces.

    Decides whether an agent may bid on a task, be assigned a task, or
    invoke a tool, and keeps an audit trail of every decision.
    """
    try:
        config = load_config(config_path)
    except AgentGateError as e:
        _fail(e)

    _setup_logging("DEBUG" if verbose else config.log_level)
    ctx.obj = config


# =============================================================================
# Helpers
# =============================================================================


DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help="Path to the SQLite database. Defaults to the configured db_path.",
        resolve_path=True,
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output in JSON format."),
]


def _config(ctx: typer.Context) -> GateConfig:
    return ctx.obj if isinstance(ctx.obj, GateConfig) else GateConfig()


def _open_db(ctx: typer.Context, db: Path | None) -> GateDB:
    try:
        return GateDB(db or _config(ctx).db_path)
    except AgentGateError as e:
        _fail(e)


def _fail(error: Exception) -> NoReturn:
    """Print an error (with its suggestion, if any) and exit 1."""
    if isinstance(error, AgentGateError):
        message = f"[E{error.code}] {error.message}"
        suggestion = error.suggestion
    else:
        message, suggestion = str(error), None
    err_console.print(f"[red]Error: {escape(message)}[/red]")
    if suggestion:
        err_console.print(f"[dim]Suggestion: {escape(suggestion)}[/dim]")
    raise typer.Exit(code=1)


def _warn(problems: list[str]) -> None:
    for problem in problems:
        err_console.print(f"[yellow]Warning: {escape(problem)}[/yellow]")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _pack_dict(pack: PolicyPack) -> dict[str, Any]:
    return pack.model_dump(mode="json", by_alias=True, exclude_none=True)


def _display_pack(pack: PolicyPack) -> None:
    console.print(f"[bold]{escape(pack.name)}[/bold] [dim]({pack.id})[/dim]")
    console.print(f"  Version:    {pack.version}")
    console.print(f"  Scope:      {pack.scope or 'global'}")
    console.print(f"  Created by: {pack.created_by}")
    console.print(f"  Created:    {pack.created_at.isoformat()[:19]}")
    if pack.updated_at:
        console.print(f"  Updated:    {pack.updated_at.isoformat()[:19]}")
    if pack.is_archived:
        console.print("  [yellow]Archived[/yellow]")
    console.print()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Category", style="cyan")
    table.add_column("Enabled", width=8)
    table.add_column("Custom checks", justify="right")
    table.add_column("Description")
    for category, rule in pack.rules.items():
        table.add_row(
            category.value,
            "[green]yes[/green]" if rule.enabled else "[dim]no[/dim]",
            str(len(rule.checks)),
            escape(rule.description or ""),
        )
    console.print(table)


def _display_checkpoint(label: str, result: CheckpointResult) -> None:
    status = "[green]ALLOW[/green]" if result.allowed else "[red]DENY[/red]"
    console.print(f"{label}: {status}")
    for reason in result.reasons:
        console.print(f"  - {reason}")


def _decisions_table(decisions: list[PolicyDecision]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Decided")
    table.add_column("Checkpoint", width=10)
    table.add_column("Decision", width=8)
    table.add_column("Pack", style="cyan")
    table.add_column("Task")
    table.add_column("Reasons")
    for d in decisions:
        decision = "[green]ALLOW[/green]" if d.decision == DecisionOutcome.ALLOW else "[red]DENY[/red]"
        table.add_row(
            d.decided_at.isoformat()[:19],
            d.checkpoint.value,
            decision,
            f"{d.pack_name} v{d.pack_version}",
            d.task_title or d.task_id or "-",
            ", ".join(d.reason_codes),
        )
    return table


# =============================================================================
# Pack Subcommand Group
# =============================================================================

pack_app = typer.Typer(
    name="pack",
    help="Manage policy packs.",
    no_args_is_help=True,
)
app.add_typer(pack_app, name="pack")


@pack_app.command("create")
def pack_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Pack name.")],
    rules_path: Annotated[
        Path,
        typer.Option(
            "--rules",
            "-r",
            help="YAML file mapping rule categories to definitions.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    scope: Annotated[
        Optional[str],
        typer.Option("--scope", "-s", help="Organization ID. Omit for a global pack."),
    ] = None,
    created_by: Annotated[
        str,
        typer.Option("--created-by", help="Actor creating the pack."),
    ] = "system",
    db: DbOption = None,
) -> None:
    """
    Create a policy pack at version 1.0.0.

    Example:
        $ agentgate pack create "EU only" --rules eu.yaml --scope org-1
    """
    try:
        rules = load_rules(rules_path)
    except AgentGateError as e:
        _fail(e)
    _warn(validate_rules(rules))

    with _open_db(ctx, db) as store:
        try:
            pack_id = store.create_pack(name, rules, scope=scope, created_by=created_by)
        except AgentGateError as e:
            _fail(e)

    console.print(f"[green]Created pack[/green] [cyan]{pack_id}[/cyan] (version 1.0.0)")


@pack_app.command("update")
def pack_update(
    ctx: typer.Context,
    pack_id: Annotated[str, typer.Argument(help="Pack ID.")],
    rules_path: Annotated[
        Optional[Path],
        typer.Option(
            "--rules",
            "-r",
            help="YAML file with the categories to replace.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    name: Annotated[
        Optional[str],
        typer.Option("--name", help="New pack name."),
    ] = None,
    expected_version: Annotated[
        Optional[str],
        typer.Option(
            "--expected-version",
            help="Fail if the stored version is not this one.",
        ),
    ] = None,
    db: DbOption = None,
) -> None:
    """Replace categories and/or rename a pack, bumping its patch version."""
    if rules_path is None and name is None:
        err_console.print("[red]Error: nothing to update; pass --rules and/or --name[/red]")
        raise typer.Exit(code=1)

    try:
        rules = load_rules(rules_path) if rules_path else None
    except AgentGateError as e:
        _fail(e)

    with _open_db(ctx, db) as store:
        try:
            version = store.update_pack(
                pack_id,
                rules=rules,
                name=name,
                expected_version=expected_version,
            )
            problems = PolicyEngine(store.get_pack(pack_id)).validate()
        except AgentGateError as e:
            _fail(e)

    _warn(problems)
    console.print(f"[green]Updated pack[/green] [cyan]{pack_id}[/cyan] to version {version}")


@pack_app.command("list")
def pack_list(
    ctx: typer.Context,
    scope: Annotated[
        Optional[str],
        typer.Option("--scope", "-s", help="Only packs for this organization."),
    ] = None,
    include_archived: Annotated[
        bool,
        typer.Option("--all", help="Include archived packs."),
    ] = False,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of packs to show."),
    ] = 100,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List policy packs, newest first."""
    with _open_db(ctx, db) as store:
        try:
            packs = store.list_packs(scope=scope, limit=limit, include_archived=include_archived)
        except AgentGateError as e:
            _fail(e)

    if json_output:
        _print_json({"packs": [_pack_dict(p) for p in packs], "count": len(packs)})
        return

    if not packs:
        console.print("[dim]No policy packs found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Pack ID", style="cyan")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Scope")
    table.add_column("Categories")
    table.add_column("Created")
    for p in packs:
        name = f"{p.name} [yellow](archived)[/yellow]" if p.is_archived else p.name
        table.add_row(
            p.id,
            name,
            p.version,
            p.scope or "global",
            ", ".join(c.value for c in p.rules),
            p.created_at.isoformat()[:19],
        )
    console.print(table)


@pack_app.command("show")
def pack_show(
    ctx: typer.Context,
    pack_id: Annotated[str, typer.Argument(help="Pack ID.")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a policy pack, including archived ones."""
    with _open_db(ctx, db) as store:
        try:
            pack = store.get_pack(pack_id, include_archived=True)
        except AgentGateError as e:
            _fail(e)

    if pack is None:
        err_console.print(f"[red]Error: policy pack not found: {pack_id}[/red]")
        raise typer.Exit(code=1)

    if json_output:
        _print_json(_pack_dict(pack))
    else:
        _display_pack(pack)


@pack_app.command("delete")
def pack_delete(
    ctx: typer.Context,
    pack_id: Annotated[str, typer.Argument(help="Pack ID.")],
    db: DbOption = None,
) -> None:
    """Archive a policy pack. Its decision history is kept."""
    with _open_db(ctx, db) as store:
        try:
            store.delete_pack(pack_id)
        except AgentGateError as e:
            _fail(e)

    console.print(f"[green]Archived pack[/green] [cyan]{pack_id}[/cyan]")


# =============================================================================
# Template Subcommand Group
# =============================================================================

template_app = typer.Typer(
    name="template",
    help="Browse and apply policy templates.",
    no_args_is_help=True,
)
app.add_typer(template_app, name="template")


@template_app.command("list")
def template_list(json_output: JsonOption = False) -> None:
    """List bundled policy templates."""
    entries = default_catalog().entries()

    if json_output:
        _print_json({"templates": entries, "count": len(entries)})
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("Description")
    for entry in entries:
        desc = entry["description"]
        table.add_row(entry["key"], entry["name"], desc[:60] + "..." if len(desc) > 60 else desc)
    console.print(table)


@template_app.command("show")
def template_show(
    key: Annotated[str, typer.Argument(help="Template key, e.g. HIPAA_COMPLIANCE.")],
    json_output: JsonOption = False,
) -> None:
    """Show a template's rules."""
    try:
        template = default_catalog().get(key.upper())
    except AgentGateError as e:
        _fail(e)

    if json_output:
        _print_json(template.model_dump(mode="json", by_alias=True, exclude_none=True))
        return

    console.print(f"[bold]{template.name}[/bold] [dim]({template.key})[/dim]")
    if template.description:
        console.print(f"  {template.description}")
    console.print()
    for category, rule in template.rules.items():
        console.print(f"  [cyan]{category.value}[/cyan]: {rule.description or ''}")
        for check in rule.checks:
            console.print(f"    - {check.reason_code}")


@template_app.command("apply")
def template_apply(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Template key.")],
    scope: Annotated[
        Optional[str],
        typer.Option("--scope", "-s", help="Organization ID for the new pack."),
    ] = None,
    name: Annotated[
        Optional[str],
        typer.Option("--name", help="Pack name. Defaults to the template name."),
    ] = None,
    created_by: Annotated[
        str,
        typer.Option("--created-by", help="Actor creating the pack."),
    ] = "system",
    db: DbOption = None,
) -> None:
    """Create a new pack from a template."""
    with _open_db(ctx, db) as store:
        try:
            pack_id = default_catalog().instantiate(
                store, key.upper(), scope, name=name, created_by=created_by
            )
        except AgentGateError as e:
            _fail(e)

    console.print(f"[green]Created pack[/green] [cyan]{pack_id}[/cyan] from {key.upper()}")


# =============================================================================
# Evaluation
# =============================================================================


@app.command()
def evaluate(
    ctx: typer.Context,
    pack_id: Annotated[str, typer.Argument(help="Pack ID.")],
    input_path: Annotated[
        Path,
        typer.Option(
            "--input",
            "-i",
            help="YAML file with agent, task, tool, organization and context.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    explain: Annotated[
        bool,
        typer.Option("--explain", help="Show the outcome of every check."),
    ] = False,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """
    Evaluate a pack against an input file and log the decision.

    Exits 0 when allowed and 1 when denied.

    Example:
        $ agentgate evaluate 3f2a9c1d0b7e --input bid.yaml --explain
    """
    try:
        policy_input = load_input(input_path)
    except (AgentGateError, ValueError, OSError) as e:
        _fail(e)

    with _open_db(ctx, db) as store:
        gate = PolicyGate(store, InMemoryFacts())
        try:
            result = gate.evaluate_pack(pack_id, policy_input)
            traces = []
            if explain:
                traces = PolicyEngine(store.get_pack(pack_id)).explain(policy_input)
        except AgentGateError as e:
            _fail(e)

    if json_output:
        data = result.model_dump(mode="json")
        if explain:
            data["checks"] = [
                {
                    "category": t.category.value,
                    "reason_code": t.reason_code,
                    "outcome": t.outcome,
                    "builtin": t.builtin,
                }
                for t in traces
            ]
        _print_json(data)
    else:
        _display_checkpoint(
            "Decision",
            CheckpointResult(allowed=result.allow, reasons=result.reason_codes),
        )
        if traces:
            console.print()
            table = Table(show_header=True, header_style="bold")
            table.add_column("Category", style="cyan")
            table.add_column("Check")
            table.add_column("Outcome", width=8)
            table.add_column("Source", width=8)
            for t in traces:
                if t.outcome is None:
                    outcome = "[yellow]unknown[/yellow]"
                elif t.outcome:
                    outcome = "[green]pass[/green]"
                else:
                    outcome = "[red]fail[/red]"
                table.add_row(
                    t.category.value,
                    t.reason_code,
                    outcome,
                    "default" if t.builtin else "custom",
                )
            console.print(table)

    raise typer.Exit(code=0 if result.allow else 1)


# =============================================================================
# Check Subcommand Group
# =============================================================================

check_app = typer.Typer(
    name="check",
    help="Run marketplace checkpoints against a facts file.",
    no_args_is_help=True,
)
app.add_typer(check_app, name="check")

FactsOption = Annotated[
    Path,
    typer.Option(
        "--facts",
        "-f",
        help="YAML file with agents, tasks and organizations lists.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]


def _load_facts(path: Path) -> InMemoryFacts:
    try:
        return InMemoryFacts.from_yaml(path)
    except (ValueError, OSError) as e:
        _fail(e)


def _run_checkpoint(
    ctx: typer.Context,
    db: Path | None,
    facts_path: Path,
    json_output: bool,
    label: str,
    call: Any,
) -> None:
    facts = _load_facts(facts_path)
    with _open_db(ctx, db) as store:
        gate = PolicyGate(store, facts, max_workers=_config(ctx).batch_max_workers)
        try:
            result = call(gate)
        except ValueError as e:
            _fail(e)

    if json_output:
        _print_json(result.model_dump(mode="json"))
    else:
        _display_checkpoint(label, result)
    raise typer.Exit(code=0 if result.allowed else 1)


@check_app.command("bid")
def check_bid(
    ctx: typer.Context,
    agent_id: Annotated[str, typer.Argument(help="Agent ID.")],
    task_id: Annotated[str, typer.Argument(help="Task ID.")],
    facts_path: FactsOption,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Can the agent bid on the task?"""
    _run_checkpoint(
        ctx, db, facts_path, json_output, "Bid",
        lambda gate: gate.can_agent_bid(agent_id, task_id),
    )


@check_app.command("assign")
def check_assign(
    ctx: typer.Context,
    agent_id: Annotated[str, typer.Argument(help="Agent ID.")],
    task_id: Annotated[str, typer.Argument(help="Task ID.")],
    facts_path: FactsOption,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Can the task be assigned to the agent?"""
    _run_checkpoint(
        ctx, db, facts_path, json_output, "Assignment",
        lambda gate: gate.can_assign_task(agent_id, task_id),
    )


@check_app.command("tool")
def check_tool(
    ctx: typer.Context,
    agent_id: Annotated[str, typer.Argument(help="Agent ID.")],
    tool_name: Annotated[str, typer.Argument(help="Tool name.")],
    facts_path: FactsOption,
    task_id: Annotated[
        Optional[str],
        typer.Option("--task", help="Task the tool is invoked for."),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """May the agent invoke the tool?"""
    context = {"task_id": task_id} if task_id else None
    _run_checkpoint(
        ctx, db, facts_path, json_output, "Tool",
        lambda gate: gate.can_invoke_tool(agent_id, tool_name, context),
    )


@check_app.command("batch")
def check_batch(
    ctx: typer.Context,
    task_id: Annotated[str, typer.Argument(help="Task ID.")],
    agent_ids: Annotated[list[str], typer.Argument(help="Agent IDs.")],
    facts_path: FactsOption,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Run the bid checkpoint for several agents on one task."""
    facts = _load_facts(facts_path)
    with _open_db(ctx, db) as store:
        gate = PolicyGate(store, facts, max_workers=_config(ctx).batch_max_workers)
        try:
            results = gate.batch_evaluate_agents(agent_ids, task_id)
        except ValueError as e:
            _fail(e)

    if json_output:
        _print_json({agent_id: r.model_dump(mode="json") for agent_id, r in results.items()})
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Agent", style="cyan")
    table.add_column("Decision", width=8)
    table.add_column("Reasons")
    for agent_id in agent_ids:
        r = results[agent_id]
        decision = "[green]ALLOW[/green]" if r.allowed else "[red]DENY[/red]"
        table.add_row(agent_id, decision, ", ".join(r.reasons))
    console.print(table)


# =============================================================================
# Audit
# =============================================================================


@app.command()
def violations(
    ctx: typer.Context,
    agent_id: Annotated[str, typer.Argument(help="Agent ID.")],
    limit: Annotated[
        Optional[int],
        typer.Option("--limit", "-n", help="Maximum number of violations to show."),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List an agent's most recent denied decisions."""
    limit = limit or _config(ctx).violations_limit
    with _open_db(ctx, db) as store:
        try:
            decisions = DecisionLog(store).get_agent_violations(agent_id, limit=limit)
        except AgentGateError as e:
            _fail(e)

    if json_output:
        _print_json(
            {"violations": [d.model_dump(mode="json") for d in decisions], "count": len(decisions)}
        )
        return

    if not decisions:
        console.print(f"[dim]No violations recorded for {agent_id}.[/dim]")
        return
    console.print(_decisions_table(decisions))


@app.command()
def compliance(
    ctx: typer.Context,
    agent_id: Annotated[str, typer.Argument(help="Agent ID.")],
    window_days: Annotated[
        Optional[int],
        typer.Option("--window-days", "-w", help="Trailing window in days."),
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show the percentage of an agent's recent decisions that were allowed."""
    window_days = window_days or _config(ctx).compliance_window_days
    with _open_db(ctx, db) as store:
        try:
            rate = DecisionLog(store).get_compliance_rate(agent_id, window_days=window_days)
        except AgentGateError as e:
            _fail(e)

    if json_output:
        _print_json({"agent_id": agent_id, "window_days": window_days, "compliance_rate": rate})
        return

    color = "green" if rate >= 90 else "yellow" if rate >= 70 else "red"
    console.print(
        f"Compliance for [cyan]{agent_id}[/cyan] over {window_days} days: "
        f"[{color}]{rate:.1f}%[/{color}]"
    )


if __name__ == "__main__":
    app()
