"""Command line interface for browser-oracle."""

from __future__ import annotations

import asyncio
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from .browser.attachments import attachments_from_paths
from .browser.recovery import load_session_state
from .config import load_config
from .errors import OracleError
from .factory import build_notifier, build_runner

app = typer.Typer(help="Browser Oracle entry point")


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure logging before executing any command."""

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command()
def version() -> None:
    """Print the package version."""

    try:
        typer.echo(get_version("browser-oracle"))
    except PackageNotFoundError:  # pragma: no cover - when running from source tree
        typer.echo("0.0.0")


@app.command()
def run(
    prompt: Annotated[str, typer.Argument(help="Prompt text to submit.")],
    files: Annotated[
        Optional[list[Path]],
        typer.Option("--file", "-f", help="File to attach; repeat for several files."),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to YAML configuration."),
    ] = None,
    env_file: Annotated[
        Optional[Path],
        typer.Option("--env-file", help="Path to an .env file with default configuration values."),
    ] = None,
    url: Annotated[
        Optional[str],
        typer.Option("--url", help="Chat site to drive."),
    ] = None,
    headless: Annotated[
        Optional[bool],
        typer.Option("--headless/--headed", help="Run the browser in headless mode (or headed)."),
    ] = None,
    keep_browser: Annotated[
        Optional[bool],
        typer.Option("--keep-browser/--close-browser", help="Leave Chrome running afterwards."),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Seconds to wait for the answer."),
    ] = None,
    show_progress: Annotated[
        bool,
        typer.Option("--progress-diagnostics", help="Add page diagnostics to progress lines."),
    ] = False,
) -> None:
    """Submit a prompt through the browser and print the answer."""

    overrides: dict[str, Any] = {}
    browser: dict[str, Any] = {}
    if url is not None:
        browser["url"] = url
    if headless is not None:
        browser["headless"] = headless
    if keep_browser is not None:
        browser["keep_browser"] = keep_browser
    if timeout is not None:
        browser["timeout"] = timeout
    if browser:
        overrides["browser"] = browser

    config = load_config(config_path, env_file=env_file, **overrides)
    for path in files or []:
        if not path.is_file():
            raise typer.BadParameter(f"Attachment not found: {path}", param_hint="--file")
    attachments = attachments_from_paths(files or [])

    notifier = build_notifier("console")
    runner = build_runner(config, notifier, verbose=show_progress)
    try:
        result = asyncio.run(runner.run(prompt, attachments))
    except (OracleError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(result.answer_markdown)


@app.command()
def session(
    session_dir: Annotated[Path, typer.Argument(help="Run profile directory holding browser_session.json.")],
) -> None:
    """Show the saved conversation location of a run."""

    state = load_session_state(session_dir)
    if state is None:
        typer.echo(f"No session state found in {session_dir}", err=True)
        raise typer.Exit(code=1)
    typer.echo(state.model_dump_json(by_alias=True, exclude_none=True, indent=2))


if __name__ == "__main__":
    app()
