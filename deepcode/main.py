"""Command-line entry point for deepcode."""

import asyncio
import json
import signal
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from deepcode.config import Config, set_config
from deepcode.logging import configure_logging, get_logger
from deepcode.prompt import default_project_root
from deepcode.session import SessionMessage
from deepcode.session_manager import INTERRUPTED_NOTICE, SessionManager, UserPrompt


log = get_logger(__name__)
app = typer.Typer(help="deepcode - an agentic coding assistant for your terminal")
console = Console()

EXIT_COMMANDS = {"/exit", "/quit"}


def _load_config(config_path: str = "", model: str = "", verbose: bool = False) -> Config:
    """Load configuration and apply CLI overrides."""
    if config_path:
        try:
            cfg = Config.from_yaml(Path(config_path))
        except Exception as e:
            log.error("Failed to load config", path=config_path, error=str(e))
            cfg = Config.from_yaml()
    else:
        cfg = Config.from_yaml()
    cfg.apply_legacy_settings(Path(cfg.session.data_dir).expanduser() / "settings.json")

    if model:
        cfg.model.model = model
    if verbose:
        cfg.logging.level = "DEBUG"

    set_config(cfg)
    configure_logging(cfg)
    return cfg


def _resolve_project(project: str) -> Path:
    return Path(project).expanduser().resolve() if project else default_project_root()


def _tool_label(message: SessionMessage) -> str:
    meta = message.meta
    function = meta.function if meta and isinstance(meta.function, dict) else {}
    name = function.get("name") or "tool"
    params = meta.params_md if meta and meta.params_md else ""
    return f"{name} {params}".strip()


def render_message(message: SessionMessage, show_tool_results: bool = True) -> None:
    """Print one visible message."""
    if not message.visible:
        return
    if message.role == "user":
        console.print(f"[bold cyan]you>[/] {message.content or ''}")
        return
    if message.role == "tool":
        console.print(f"[magenta]● {_tool_label(message)}[/]")
        result = message.meta.result_md if message.meta else ""
        if show_tool_results and result:
            console.print(result, style="dim", markup=False, highlight=False)
        return
    if message.role == "assistant":
        content = (message.content or "").strip()
        if content:
            style = "dim italic" if message.meta and message.meta.as_thinking else None
            console.print(Markdown(content), style=style)


def _on_message(message: SessionMessage, should_connect: bool) -> None:
    # Typed prompts are already on screen.
    if message.role == "user":
        if message.content == INTERRUPTED_NOTICE:
            console.print(f"[yellow]{INTERRUPTED_NOTICE}[/]")
        return
    render_message(message)


def schedule_interrupt(manager: SessionManager, pending: set[asyncio.Task]) -> asyncio.Task | None:
    """Interrupt the active session in the background, if it is running.

    The task stays in ``pending`` until it finishes; failures are logged.
    """
    session_id = manager.get_active_session_id()
    if not session_id or not manager.is_running(session_id):
        return None

    def _done(task: asyncio.Task) -> None:
        pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Interrupt failed", session_id=session_id, error=str(task.exception()))

    task = asyncio.ensure_future(manager.interrupt_session(session_id))
    pending.add(task)
    task.add_done_callback(_done)
    return task


async def _run_prompt(manager: SessionManager, prompt: UserPrompt) -> None:
    """Run one prompt; Ctrl-C interrupts the active session instead of exiting."""
    loop = asyncio.get_running_loop()
    interrupts: set[asyncio.Task] = set()

    try:
        loop.add_signal_handler(signal.SIGINT, schedule_interrupt, manager, interrupts)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        await manager.handle_user_prompt(prompt)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def run_chat(manager: SessionManager) -> None:
    """Interactive prompt loop."""
    console.print(f"[bold]deepcode[/] in [green]{manager.project_root}[/]")
    console.print("[dim]/new starts a new session, /compact summarizes it, /skills lists skills, /exit quits.[/]")
    while True:
        try:
            text = await asyncio.to_thread(console.input, "[bold cyan]you>[/] ")
        except EOFError:
            return
        text = text.strip()
        if not text:
            continue
        if text in EXIT_COMMANDS:
            return
        if text == "/new":
            manager.set_active_session_id(None)
            console.print("[dim]Started a new session.[/]")
            continue
        if text == "/skills":
            for skill in manager.list_skills():
                console.print(f"[bold]/{skill.name}[/] {skill.description}")
            continue
        if text == "/compact":
            session_id = manager.get_active_session_id()
            if not session_id:
                console.print("[yellow]No active session.[/]")
                continue
            try:
                summary = await manager.compact_session(session_id)
            except Exception as e:
                console.print(f"[red]Compaction failed: {e}[/]")
                continue
            console.print("[dim]Nothing to compact.[/]" if summary is None else "[dim]Session compacted.[/]")
            continue

        try:
            await _run_prompt(manager, UserPrompt(text=text))
        except Exception as e:
            log.error("Prompt failed", error=str(e))
            console.print(f"[red]{e}[/]")


@app.command()
def chat(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    project: str = typer.Option("", "-p", "--project", help="Project root (defaults to cwd)"),
    session: str = typer.Option("", "-s", "--session", help="Resume an existing session id"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Start an interactive session."""
    cfg = _load_config(config, model, verbose)
    manager = SessionManager(_resolve_project(project), on_message=_on_message, config=cfg)
    if session:
        if manager.get_session(session) is None:
            console.print(f"[red]Unknown session: {session}[/]")
            raise typer.Exit(code=1)
        manager.set_active_session_id(session)

    try:
        asyncio.run(run_chat(manager))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)


@app.command()
def sessions(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    project: str = typer.Option("", "-p", "--project", help="Project root (defaults to cwd)"),
    as_json: bool = typer.Option(False, "--json", help="Print the index entries as JSON"),
) -> None:
    """List recent sessions for a project."""
    cfg = _load_config(config)
    manager = SessionManager(_resolve_project(project), config=cfg)
    entries = manager.list_sessions()
    if as_json:
        console.print_json(json.dumps([entry.model_dump() for entry in entries]))
        return

    table = Table(title="Sessions", show_header=True, header_style="bold cyan")
    table.add_column("ID")
    table.add_column("Status")
    table.add_column("Updated")
    table.add_column("Summary")
    for entry in entries:
        table.add_row(entry.id, entry.status, entry.update_time, (entry.summary or "").replace("\n", " "))
    console.print(table)


@app.command()
def show(
    session_id: str = typer.Argument(..., help="Session id"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    project: str = typer.Option("", "-p", "--project", help="Project root (defaults to cwd)"),
) -> None:
    """Print the visible transcript of a session."""
    cfg = _load_config(config)
    manager = SessionManager(_resolve_project(project), config=cfg)
    entry = manager.get_session(session_id)
    if entry is None:
        console.print(f"[red]Unknown session: {session_id}[/]")
        raise typer.Exit(code=1)

    console.print(f"[bold]{entry.summary or entry.id}[/] [dim]({entry.status})[/]")
    for message in manager.list_session_messages(session_id):
        render_message(message)
    if entry.fail_reason:
        console.print(f"[yellow]{entry.fail_reason}[/]")


@app.command()
def version() -> None:
    """Show version information."""
    from deepcode import __version__
    console.print(f"deepcode v{__version__}")


if __name__ == "__main__":
    app()
