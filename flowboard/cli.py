"""flowboard CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer

from flowboard.server.app import ServerApp, ServiceResponse, create_app
from flowboard.shared.logging import configure_logging
from flowboard.shared.settings import get_settings

app = typer.Typer(add_completion=False, help="flowboard: GitHub Actions workflow status board")


def _build_app() -> ServerApp:
    settings = get_settings()
    configure_logging(settings.log_level)
    return create_app(settings=settings)


def _emit(response: ServiceResponse) -> None:
    typer.echo(json.dumps(response.body, indent=2))
    if not response.ok:
        raise typer.Exit(code=1)


@app.command()
def status() -> None:
    """Print the latest run status of every tracked workflow."""
    _emit(_build_app().get_workflow_statuses())


@app.command("list")
def list_workflows() -> None:
    """Print the tracked workflows in dashboard order."""
    _emit(_build_app().list_workflows())


@app.command()
def add(
    repo: str = typer.Argument(..., help="Repository as owner/repo"),
    workflow: str = typer.Argument(..., help="Workflow file, e.g. ci.yml"),
    label: str = typer.Option(..., "--label"),
) -> None:
    """Start tracking a workflow."""
    _emit(_build_app().add_workflow({"repo": repo, "workflow": workflow, "label": label}))


@app.command()
def remove(
    repo: str = typer.Argument(..., help="Repository as owner/repo"),
    workflow: str = typer.Argument(..., help="Workflow file, e.g. ci.yml"),
) -> None:
    """Stop tracking a workflow."""
    _emit(_build_app().remove_workflow({"repo": repo, "workflow": workflow}))


@app.command()
def reorder(file: Path = typer.Option(..., "--file")) -> None:
    """Reorder tracked workflows from a JSON list of {owner, repo, workflow}."""
    try:
        order: Any = json.loads(file.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"Error: cannot read order file: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    if isinstance(order, dict):
        order = order.get("workflows")
    _emit(_build_app().reorder_workflows({"workflows": order}))


if __name__ == "__main__":
    app()
