"""Typer CLI for managing Kafka topics through the remote operator."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from topic_provider.config.loader import load_provider_config, load_topic_spec
from topic_provider.config.models import ProviderConfig, TopicSpec
from topic_provider.errors import TopicProviderError
from topic_provider.remote.factory import create_invoker
from topic_provider.state import ResourceState, load_state, save_state
from topic_provider.topics.diff import ATTRIBUTES, DiffResult
from topic_provider.topics.model import parse_desired_state
from topic_provider.topics.reconciler import TopicReconciler

T = TypeVar("T")

console = Console()
app = typer.Typer(name="topicctl", help="Kafka topic lifecycle CLI")

DEFAULT_STATE = "topic.state.json"


def _configure_logging(level: int) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Kafka topic lifecycle CLI."""
    _configure_logging(logging.DEBUG if verbose else logging.INFO)


def _provider(provider_config: str | None) -> ProviderConfig:
    try:
        return load_provider_config(Path(provider_config) if provider_config else None)
    except (ValueError, FileNotFoundError, TypeError) as exc:
        console.print(f"[red]Invalid provider config:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def _spec(spec_path: str) -> TopicSpec:
    path = Path(spec_path)
    if not path.exists():
        console.print(f"[red]Spec file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_topic_spec(path)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Validation error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


def _run(
    config: ProviderConfig,
    action: Callable[[TopicReconciler], Awaitable[T]],
) -> T:
    """Run *action* with a reconciler, mapping provider errors to exit 1."""

    async def _main() -> T:
        invoker = create_invoker(config)
        try:
            return await action(TopicReconciler(invoker, config))
        finally:
            close = getattr(invoker, "close", None)
            if close is not None:
                await close()

    try:
        return asyncio.run(_main())
    except TopicProviderError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        for note in getattr(exc, "__notes__", []):
            console.print(f"  {escape(note)}")
        raise typer.Exit(1) from exc


def _attributes_table(title: str, attributes: dict[str, Any]) -> Table:
    table = Table(title=title)
    table.add_column("Attribute", style="cyan")
    table.add_column("Value")
    for name in ATTRIBUTES:
        if name in attributes:
            table.add_row(name, escape(str(attributes[name])))
    return table


@app.command()
def validate(
    spec_path: str = typer.Argument(..., help="Path to topic YAML"),
) -> None:
    """Validate a topic desired-state file."""
    spec = _spec(spec_path)
    console.print(f"[green]Valid[/green] — topic={spec.name}")
    console.print(f"  partitions:         {spec.partitions}")
    console.print(f"  replication_factor: {spec.replication_factor}")
    console.print(f"  bootstrap_server:   {spec.bootstrap_server}")
    if spec.config:
        console.print("  config:")
        for key, value in sorted(spec.config.items()):
            console.print(f"    {key} = {value}")


@app.command("list")
def list_topics(
    bootstrap_server: str = typer.Option(..., "--bootstrap-server", "-b"),
    provider_config: str | None = typer.Option(
        None, "--provider-config", help="Provider YAML"
    ),
) -> None:
    """List topics on a cluster."""
    config = _provider(provider_config)
    names = _run(config, lambda rec: rec.list_topics(bootstrap_server))
    table = Table(title=f"Topics — {bootstrap_server}")
    table.add_column("Name", style="cyan")
    for name in names:
        table.add_row(escape(name))
    console.print(table)


@app.command()
def show(
    name: str = typer.Argument(..., help="Topic name"),
    bootstrap_server: str = typer.Option(..., "--bootstrap-server", "-b"),
    provider_config: str | None = typer.Option(
        None, "--provider-config", help="Provider YAML"
    ),
) -> None:
    """Show one topic as the cluster reports it."""
    config = _provider(provider_config)
    topic = _run(config, lambda rec: rec.lookup(name, bootstrap_server))
    console.print(
        _attributes_table(f"Topic — {name}", topic.to_desired_state(bootstrap_server))
    )


@app.command()
def plan(
    spec_path: str = typer.Argument(..., help="Path to topic YAML"),
    state_path: str = typer.Option(DEFAULT_STATE, "--state", help="State file"),
    provider_config: str | None = typer.Option(
        None, "--provider-config", help="Provider YAML"
    ),
) -> None:
    """Show what apply would do."""
    spec = _spec(spec_path)
    state = load_state(state_path)
    if not state.exists:
        console.print(f"[green]+ create[/green] topic {spec.name}")
        return

    config = _provider(provider_config)

    async def _plan(rec: TopicReconciler) -> DiffResult | None:
        if state.unknown:
            await rec.read(state)
            if not state.exists:
                return None
        old = parse_desired_state(state.attributes)
        return await rec.custom_diff(old, spec, resource_id=state.id)

    diff = _run(config, _plan)
    if diff is None:
        console.print(f"[green]+ create[/green] topic {spec.name}")
        return
    if not diff.has_changes:
        console.print(f"[dim]no changes[/dim] for topic {state.id}")
        return

    if diff.requires_replace:
        action = "[red]-/+ replace[/red]"
    else:
        action = "[yellow]~ update[/yellow]"
    table = Table(title=f"Plan — {state.id}")
    table.add_column("Attribute", style="cyan")
    table.add_column("Old")
    table.add_column("New")
    table.add_column("Forces replace")
    new_attrs = spec.model_dump()
    for name in ATTRIBUTES:
        if name in diff.changed:
            table.add_row(
                name,
                escape(str(state.attributes.get(name))),
                escape(str(new_attrs[name])),
                "yes" if diff.forces_replace[name] else "no",
            )
    console.print(f"{action} topic {state.id}")
    console.print(table)


@app.command()
def apply(
    spec_path: str = typer.Argument(..., help="Path to topic YAML"),
    state_path: str = typer.Option(DEFAULT_STATE, "--state", help="State file"),
    provider_config: str | None = typer.Option(
        None, "--provider-config", help="Provider YAML"
    ),
) -> None:
    """Create, update or replace the topic to match the desired-state file."""
    spec = _spec(spec_path)
    state = load_state(state_path)
    config = _provider(provider_config)

    async def _apply(rec: TopicReconciler) -> str:
        if state.unknown and state.exists:
            # An interrupted operation may or may not have taken effect
            await rec.read(state)
        if not state.exists:
            await rec.create(spec, state)
            return "created"
        old = parse_desired_state(state.attributes)
        diff = await rec.custom_diff(old, spec, resource_id=state.id)
        if diff.requires_replace:
            await rec.replace(spec, state)
            return "replaced"
        if diff.has_changes:
            await rec.update(old, spec, state, diff)
            return "updated"
        await rec.read(state)
        return "unchanged" if state.exists else "gone"

    try:
        result = _run(config, _apply)
    finally:
        save_state(state, state_path)
    if result == "gone":
        console.print(
            f"[yellow]Topic {spec.name} no longer exists; run apply again "
            "to recreate it[/yellow]"
        )
        return
    console.print(f"[green]Topic {spec.name} {result}[/green]")


@app.command()
def destroy(
    state_path: str = typer.Option(DEFAULT_STATE, "--state", help="State file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    provider_config: str | None = typer.Option(
        None, "--provider-config", help="Provider YAML"
    ),
) -> None:
    """Delete the topic recorded in the state file."""
    state = load_state(state_path)
    if not state.exists:
        console.print("[yellow]Nothing to destroy[/yellow]")
        return
    if not yes:
        confirm = typer.confirm(f"Delete topic '{state.id}'?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    config = _provider(provider_config)
    name = state.id
    try:
        _run(config, lambda rec: rec.delete(state))
    finally:
        save_state(state, state_path)
    console.print(f"[green]Topic {name} deleted[/green]")


@app.command("import")
def import_topic(
    name: str = typer.Argument(..., help="Topic name"),
    bootstrap_server: str = typer.Option(..., "--bootstrap-server", "-b"),
    state_path: str = typer.Option(DEFAULT_STATE, "--state", help="State file"),
    provider_config: str | None = typer.Option(
        None, "--provider-config", help="Provider YAML"
    ),
) -> None:
    """Adopt an existing topic into a state file."""
    existing = load_state(state_path)
    if existing.exists:
        console.print(
            f"[red]State file already tracks topic {existing.id}[/red]"
        )
        raise typer.Exit(1)
    config = _provider(provider_config)
    state: ResourceState = _run(
        config, lambda rec: rec.import_state(name, bootstrap_server)
    )
    save_state(state, state_path)
    console.print(f"[green]Imported topic {name}[/green]")
    console.print(_attributes_table(f"Topic — {name}", state.attributes))
