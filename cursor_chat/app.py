"""cursor-chat: main application entry point.

A console host for the bridge: a Rich REPL (or a single prompt from the
command line) that streams the agent's reply, shows tool calls, asks the
MCP approval question when the agent raises it, and keeps history in
~/.cursor_chat so a conversation can be resumed later.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from cursor_chat.adapters.chat_controller import ChatController
from cursor_chat.engine.approval import ApprovalChoice, ApprovalRequest
from cursor_chat.engine.auth import is_agent_installed, open_login_flow, resolve_auth
from cursor_chat.engine.bridge import AgentBridge, BridgeOptions
from cursor_chat.engine.config import AgentSettings, PermissionMode
from cursor_chat.engine.errors import AgentSpawnError
from cursor_chat.engine.events import AssistantEvent, InitEvent, ResultEvent, ToolCallEvent
from cursor_chat.engine.session import LedgerOptions, SessionLedger
from cursor_chat.engine.yaml_config import ConfigFileError, load_yaml_config
from cursor_chat.shared.file_utils import (
    extract_context_paths,
    read_active_file,
    resolve_working_directory,
)
from cursor_chat.shared.formatters.tool_call import format_tool_call, render_tool_call_rich
from cursor_chat.shared.services.chat_notes import list_chat_history_files, read_chat_note_meta
from cursor_chat.shared.services.persistence import StateStore, default_state_path
from cursor_chat.shared.services.prompt_builder import PromptContext

logger = logging.getLogger(__name__)

HELP_TEXT = """\
[bold]Commands[/bold]
  /new               start a fresh conversation
  /resume            resume the last conversation
  /history           list saved conversations
  /save \\[title]      save this conversation as a chat document
  /open PATH         reopen a saved chat document
  /file PATH         attach a file as the active note for the next prompt
  /quit              exit
Mention files or folders with @path to pass them as context."""


def _configure_logging(verbose: bool) -> Path:
    log_level = os.getenv("CURSOR_CHAT_LOG_LEVEL", "INFO").upper()
    log_dir = default_state_path().parent / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "cursor-chat.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    return log_file


class ChatApp:
    """Console front end around a ChatController."""

    def __init__(
        self,
        controller: ChatController,
        base_dir: Path,
        console: Console | None = None,
    ) -> None:
        self.controller = controller
        self.base_dir = base_dir
        self.console = console or Console()
        self._active_file: Path | None = None
        self._approvals: asyncio.Queue[ApprovalRequest] = asyncio.Queue()
        bridge = controller.bridge
        bridge.on("init", self._on_init)
        bridge.on("assistant", self._on_assistant)
        bridge.on("tool_call", self._on_tool_call)
        bridge.on("result", self._on_result)
        bridge.on("error", self._on_error)
        bridge.on("approval_required", self._approvals.put_nowait)

    # ── Rendering ──

    def _on_init(self, event: InitEvent) -> None:
        self.console.print(
            f"[dim]session {escape(event.session_id[:8])} · "
            f"{escape(event.model or 'default model')}[/dim]"
        )

    def _on_assistant(self, event: AssistantEvent) -> None:
        self.console.print(event.text, end="", markup=False, highlight=False)

    def _on_tool_call(self, event: ToolCallEvent) -> None:
        if not self.controller.settings.show_tool_calls:
            return
        self.console.print()
        self.console.print(render_tool_call_rich(format_tool_call(event)))

    def _on_result(self, event: ResultEvent) -> None:
        self.console.print()
        style = "red" if event.is_error else "dim"
        self.console.print(
            f"[{style}]done in {event.duration_ms / 1000:.1f}s[/{style}]"
        )

    def _on_error(self, error: BaseException) -> None:
        self.console.print(f"\n[red]Error:[/red] {escape(str(error))}")

    # ── Turns ──

    def _build_context(self, text: str) -> PromptContext:
        context = PromptContext(
            context_paths=extract_context_paths(text, self.base_dir),
        )
        if self._active_file is not None:
            content = read_active_file(self._active_file)
            if content is not None:
                try:
                    rel = self._active_file.resolve().relative_to(self.base_dir.resolve())
                    context.active_path = rel.as_posix()
                except ValueError:
                    context.active_path = str(self._active_file)
                context.active_content = content
        return context

    async def run_turn(self, text: str) -> bool:
        """Send one prompt and wait for the agent to finish.

        Returns True when the turn ended without an error.
        """
        bridge = self.controller.bridge
        sent = await self.controller.send_prompt(text, self._build_context(text))
        if not sent:
            return False

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.controller.stop)
            restore_sigint = True
        except (NotImplementedError, RuntimeError):
            restore_sigint = False

        try:
            closed = asyncio.ensure_future(bridge.wait_closed())
            while not closed.done():
                getter = asyncio.ensure_future(self._approvals.get())
                done, _ = await asyncio.wait(
                    {closed, getter}, return_when=asyncio.FIRST_COMPLETED,
                )
                if getter in done:
                    choice = await self._ask_approval(getter.result())
                    bridge.submit_approval(choice)
                else:
                    getter.cancel()
        finally:
            if restore_sigint:
                loop.remove_signal_handler(signal.SIGINT)
        return self.controller.last_error is None

    async def _ask_approval(self, request: ApprovalRequest) -> ApprovalChoice:
        self.console.print()
        self.console.print("[yellow bold]MCP server approval required[/yellow bold]")
        if request.servers:
            table = Table(show_header=True, header_style="bold")
            table.add_column("Server")
            table.add_column("URL", style="dim")
            for server in request.servers:
                table.add_row(server.name, server.url or "")
            self.console.print(table)
        answer = await asyncio.to_thread(
            Prompt.ask,
            "a = approve all, c = continue without approval, q = quit",
            console=self.console,
            choices=[c.value for c in ApprovalChoice],
            default=ApprovalChoice.CONTINUE_WITHOUT_APPROVAL.value,
        )
        return ApprovalChoice(answer)

    # ── REPL ──

    async def repl(self) -> int:
        self.console.print(
            "[bold cyan]cursor-chat[/bold cyan] [dim]· /help for commands · "
            "Ctrl-D to exit[/dim]"
        )
        if self.controller.messages:
            self.console.print(
                f"[dim]Resumed conversation ({len(self.controller.messages)} messages)[/dim]"
            )
        while True:
            try:
                line = await asyncio.to_thread(
                    Prompt.ask, "[bold green]you[/bold green]", console=self.console,
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                return 0
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                if not self._handle_command(line):
                    return 0
                continue
            await self.run_turn(line)

    def _handle_command(self, line: str) -> bool:
        """Run a slash command; returns False to exit."""
        cmd, _, arg = line.partition(" ")
        arg = arg.strip()
        ctl = self.controller
        if cmd in ("/quit", "/exit"):
            return False
        if cmd == "/help":
            self.console.print(HELP_TEXT)
        elif cmd == "/new":
            if ctl.new_conversation():
                self.console.print("[dim]Started a new conversation[/dim]")
        elif cmd == "/resume":
            if ctl.resume_last():
                self.console.print(
                    f"[dim]Resuming {escape((ctl.last_session_id or '')[:8])}[/dim]"
                )
            else:
                self.console.print("[yellow]No previous session[/yellow]")
        elif cmd == "/history":
            self._print_history()
        elif cmd == "/save":
            path = ctl.save_chat_document(self.base_dir, title=arg or None)
            if path is None:
                self.console.print("[yellow]Nothing to save[/yellow]")
            else:
                self.console.print(f"[dim]Saved {escape(str(path))}[/dim]")
        elif cmd == "/open":
            if not arg:
                self.console.print("[yellow]Usage: /open PATH[/yellow]")
            else:
                self._open_document(Path(arg))
        elif cmd == "/file":
            self._active_file = (self.base_dir / arg) if arg else None
            label = escape(arg) if arg else "none"
            self.console.print(f"[dim]Active note: {label}[/dim]")
        else:
            self.console.print(f"[yellow]Unknown command {escape(cmd)}[/yellow]")
        return True

    def _open_document(self, path: Path) -> None:
        if not path.is_absolute():
            path = self.base_dir / path
        try:
            opened = self.controller.open_chat_document(path)
        except (OSError, ValueError) as exc:
            self.console.print(f"[red]Cannot open {escape(str(path))}:[/red] {escape(str(exc))}")
            return
        if not opened:
            self.console.print("[yellow]That document has no session to resume[/yellow]")
            return
        for msg in self.controller.messages:
            self.console.print(f"[bold]{msg.role.value}[/bold]: {escape(msg.content)}")

    def _print_history(self) -> None:
        table = Table(title="Conversations", show_header=True, header_style="bold")
        table.add_column("Session")
        table.add_column("Updated", style="dim")
        table.add_column("Messages", justify="right")
        table.add_column("Preview")
        for conv in self.controller.ledger.get_local_conversations():
            table.add_row(
                conv.session_id[:8],
                conv.timestamp.astimezone().strftime("%Y-%m-%d %H:%M"),
                str(conv.message_count),
                conv.preview.split("\n", 1)[0][:60],
            )
        self.console.print(table)

        files = list_chat_history_files(
            self.base_dir, self.controller.settings.chat_history_folder,
        )
        if files:
            self.console.print("[bold]Saved chat documents[/bold]")
            for file in files:
                meta = read_chat_note_meta(file)
                self.console.print(f"  {escape(meta.title)} [dim]{escape(str(file))}[/dim]")


# ── Entry point ──


def _resolve_settings(args, saved: AgentSettings) -> AgentSettings:
    """defaults < persisted state < YAML file < env < command-line flags."""
    settings = saved
    if args.config:
        settings = load_yaml_config(Path(args.config), base=settings)
    settings = AgentSettings.from_env(settings)
    overrides = {}
    if args.model:
        overrides["default_model"] = args.model
    if args.force:
        overrides["permission_mode"] = PermissionMode.FORCE.value
    return settings.merged(overrides)


async def _print_status(console: Console, settings: AgentSettings, cwd: Path) -> int:
    if not await is_agent_installed(settings, str(cwd)):
        console.print(
            "[red]cursor-agent not found.[/red] Install it or set agent_path."
        )
        return 1
    auth = await resolve_auth(settings, str(cwd))
    if auth.is_authenticated:
        console.print(f"[green]Authenticated[/green] via {auth.source.value}")
        return 0
    console.print(
        "[yellow]Not authenticated.[/yellow] Run [bold]cursor-chat --login[/bold] "
        "or set an API key."
    )
    return 1


async def _run_login(console: Console, settings: AgentSettings, cwd: Path) -> int:
    console.print("[dim]Opening cursor-agent login…[/dim]")
    res = await open_login_flow(settings, str(cwd))
    output = (res.stdout or res.stderr).strip()
    if output:
        console.print(output, markup=False)
    if res.code == 0:
        console.print("[green]Login complete[/green]")
        return 0
    console.print(f"[red]Login failed[/red] (exit {res.code}, signal {res.signal})")
    return 1


async def _list_conversations(console: Console, ledger: SessionLedger) -> int:
    remote = await ledger.list_cli_conversations()
    local = ledger.get_local_conversations()
    if not remote and not local:
        console.print("No conversations.")
        return 0
    if local:
        table = Table(title="Local history", header_style="bold")
        table.add_column("Session")
        table.add_column("Messages", justify="right")
        table.add_column("Preview")
        for conv in local:
            table.add_row(conv.session_id, str(conv.message_count), conv.preview[:60])
        console.print(table)
    if remote:
        console.print("[bold]cursor-agent ls[/bold]")
        for line in remote:
            console.print(f"  {line}", markup=False)
    return 0


async def _async_main(args, console: Console) -> int:
    base_dir = Path(args.cwd).expanduser().resolve() if args.cwd else Path.cwd()
    store = StateStore()
    state = store.load()
    try:
        settings = _resolve_settings(args, state.settings)
    except ConfigFileError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 2
    try:
        workdir = resolve_working_directory(base_dir, settings.working_directory)
    except ValueError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 2
    logger.info(
        "cursor-chat starting base=%s cwd=%s model=%s permission_mode=%s",
        base_dir, workdir, settings.default_model or "<default>",
        settings.permission_mode,
    )

    try:
        if args.status:
            return await _print_status(console, settings, workdir)
        if args.login:
            return await _run_login(console, settings, workdir)
    except AgentSpawnError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1

    ledger = SessionLedger(LedgerOptions(settings=settings, working_directory=str(workdir)))
    ledger.import_data(state.sessions)
    if args.list:
        return await _list_conversations(console, ledger)

    bridge = AgentBridge(
        BridgeOptions(settings=settings, working_directory=str(workdir), model=args.model or ""),
    )
    controller = ChatController(
        bridge, ledger, settings,
        store=store,
        last_session_id=state.last_session_id,
        saved_settings=state.settings,
    )

    if args.resume:
        bridge.set_session_id(args.resume)
        ledger.set_current_session(args.resume, settings.default_model)
    elif not args.new and state.last_session_id and ledger.get_messages(state.last_session_id):
        controller.resume_last()

    app = ChatApp(controller, base_dir, console)
    try:
        if args.prompt:
            ok = await app.run_turn(" ".join(args.prompt))
            return 0 if ok else 1
        return await app.repl()
    finally:
        controller.stop()
        controller.detach()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="cursor-chat",
        description="cursor-chat: chat with cursor-agent from the terminal",
    )
    parser.add_argument(
        "prompt", nargs="*",
        help="Send a single prompt and exit (omit for the interactive chat)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file with an 'agent' section",
    )
    parser.add_argument(
        "--cwd", metavar="DIR",
        help="Base directory (default: current directory)",
    )
    parser.add_argument(
        "--model", metavar="MODEL",
        help="Model for new conversations",
    )
    session_group = parser.add_mutually_exclusive_group()
    session_group.add_argument(
        "--resume", metavar="SESSION_ID",
        help="Resume a specific cursor-agent session",
    )
    session_group.add_argument(
        "--new", action="store_true",
        help="Start a fresh conversation (skip auto-resume)",
    )
    parser.add_argument(
        "--status", action="store_true",
        help="Check installation and authentication, then exit",
    )
    parser.add_argument(
        "--login", action="store_true",
        help="Run the cursor-agent login flow, then exit",
    )
    parser.add_argument(
        "--list", action="store_true",
        help="List known conversations and exit",
    )
    parser.add_argument(
        "--force", action="store_true",
        help="Unattended mode: run tools and MCP servers without asking",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Also log to stderr",
    )
    args = parser.parse_args()

    log_file = _configure_logging(args.verbose)
    logger.debug("Logging to %s", log_file)

    console = Console()
    try:
        code = asyncio.run(_async_main(args, console))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
