"""
Codex Agent - a streaming coding assistant.
Terminal UI built with Textual + Rich.
"""

import argparse
import logging
import os
import sys
import time
from typing import Callable, List, Optional

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Footer, Header, Input, Static

from rich.console import Group, RenderableType
from rich.markdown import Markdown
from rich.markup import escape as rich_escape
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from agent import (
    ChatMessage,
    ConversationOrchestrator,
    FileChangeApplier,
    MessageStatus,
    PlanError,
    Sender,
    ToolStatus,
    Transcript,
    UiDispatcher,
)
from agent.prompts import compose_system_prompt
from backend import LocalBackend
from config import (
    AVAILABLE_MODELS,
    app_config,
    get_credentials_info,
    model_config,
    provider_config,
)
from providers import ModelRegistry, ProviderClient, ProviderError, create_provider
from sessions import Session, SessionStore

# Configure logging to file so it doesn't interfere with the TUI
logging.basicConfig(
    filename="codex_agent.log",
    level=getattr(logging, app_config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================
# Rendering
# ============================================================

SPINNER_FRAMES = ["⣷", "⣯", "⣟", "⡿", "⢿", "⣻", "⣽", "⣾"]

TOOL_STATUS_ICONS = {
    ToolStatus.PENDING: "[#6e7681]○[/#6e7681]",
    ToolStatus.RUNNING: "[#8957e5]●[/#8957e5]",
    ToolStatus.COMPLETED: "[#3fb950]✓[/#3fb950]",
    ToolStatus.FAILED: "[#f85149]✗[/#f85149]",
}

STEP_STATUS_ICONS = {
    "pending": "○",
    "running": "●",
    "accepted": "✓",
    "discarded": "−",
    "failed": "✗",
}

STATUS_NOTES = {
    MessageStatus.PENDING_REVIEW: "[#e3b341]/accept or /discard[/#e3b341]",
    MessageStatus.APPLIED: "[#3fb950]✓ applied[/#3fb950]",
    MessageStatus.DISCARDED: "[#6e7681]discarded[/#6e7681]",
}


def render_message(message: ChatMessage) -> RenderableType:
    """Rich renderable for one chat message."""
    parts: List[RenderableType] = []
    if message.sender is Sender.USER:
        return Text.from_markup(f"[bold #f0f6fc]❯ [/bold #f0f6fc][#c9d1d9]{rich_escape(message.content)}[/#c9d1d9]")
    if message.sender is Sender.SYSTEM:
        color = "#f85149" if message.status is MessageStatus.ERROR else "#6e7681"
        return Text(f"   {message.content}", style=color)

    if message.thinking_content:
        thinking = message.thinking_content[-600:]
        parts.append(Text(thinking, style="italic #8b949e"))

    if message.tool_usages:
        table = Table.grid(padding=(0, 1))
        for usage in message.tool_usages:
            target = f" {rich_escape(usage.file_path)}" if usage.file_path else ""
            took = f" [#6e7681]{usage.duration_ms} ms[/#6e7681]" if usage.duration_ms is not None else ""
            table.add_row(Text.from_markup(
                f"   {TOOL_STATUS_ICONS.get(usage.status, '')} [bold]{rich_escape(usage.tool_name)}[/bold]{target}{took}"
            ))
        parts.append(table)

    if message.status is MessageStatus.ERROR:
        parts.append(Text(f"   ✗ {message.content}", style="bold #f85149"))
        if message.retry_prompt:
            parts.append(Text("   /retry to resend", style="#6e7681"))
    elif message.content:
        parts.append(Markdown(message.content))

    for step in message.plan_steps:
        icon = STEP_STATUS_ICONS.get(step.status.value, "○")
        parts.append(Text(f"   {icon} {step.step_id}. {step.description}", style="#c9d1d9"))

    for change in message.file_changes:
        parts.append(Text(f"   {change.operation.value} {change.display_path}", style="bold #58a6ff"))
        if change.diff_patch:
            parts.append(Syntax(change.diff_patch, "diff", theme="ansi_dark", word_wrap=True))

    note = STATUS_NOTES.get(message.status)
    if note and (message.file_changes or message.plan_steps):
        hint = note if not message.plan_steps or message.status is not MessageStatus.PENDING_REVIEW \
            else "[#e3b341]/plan accept or /plan discard[/#e3b341]"
        parts.append(Text.from_markup(f"   {hint}"))
    return Group(*parts) if parts else Text("")


class TextualChatUI:
    """ChatUI backed by Static widgets in the output scroll area."""

    def __init__(self, mount: Callable[[Static], None]):
        self._mount = mount
        self.messages: List[ChatMessage] = []
        self._widgets: List[Static] = []

    def add_message(self, message: ChatMessage) -> int:
        widget = Static(render_message(message))
        self.messages.append(message)
        self._widgets.append(widget)
        self._mount(widget)
        return len(self.messages) - 1

    def update_message(self, position: int, message: ChatMessage) -> None:
        self.messages[position] = message
        self._widgets[position].update(render_message(message))

    def get_message_at(self, position: int) -> Optional[ChatMessage]:
        if 0 <= position < len(self.messages):
            return self.messages[position]
        return None

    def hide_thinking_message(self) -> None:
        for pos, message in enumerate(self.messages):
            if message.status is MessageStatus.STREAMING and not message.content:
                self._widgets[pos].display = False

    def last_position(self, predicate: Callable[[ChatMessage], bool]) -> Optional[int]:
        for pos in range(len(self.messages) - 1, -1, -1):
            if predicate(self.messages[pos]):
                return pos
        return None

    def clear(self) -> None:
        for widget in self._widgets:
            widget.remove()
        self.messages.clear()
        self._widgets.clear()


HELP_TEXT = """
  /accept            apply the last proposed file changes
  /discard           discard the last proposed file changes
  /plan accept|discard   start or drop the last proposed plan
  /step accept|discard   review the running plan step
  /retry             resend the last prompt
  /cancel            cancel the running request
  /agent             toggle agent mode (auto-apply changes)
  /models            list models from the provider
  /sessions          list saved sessions for this project
  /reset             start a new session
"""


# ============================================================
# TUI Application
# ============================================================

class CodexAgentApp(App):
    """Codex Agent - streaming coding assistant TUI"""

    TITLE = "Codex Agent"

    CSS = """
    Screen {
        background: #0d1117;
    }

    #output-scroll {
        height: 1fr;
        border: none;
        padding: 1 2;
        scrollbar-size: 1 1;
    }

    #output-scroll > Static {
        width: 100%;
        height: auto;
    }

    #user-input {
        dock: bottom;
        margin: 0 2 1 2;
        border: tall #30363d;
        background: #161b22;
        color: #c9d1d9;
        padding: 0 1;
    }

    #user-input:focus {
        border: tall #58a6ff;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: #161b22;
        color: #6e7681;
        padding: 0 2;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "cancel_or_quit", "Cancel / Quit", priority=True),
        Binding("ctrl+l", "clear_screen", "Clear"),
        Binding("ctrl+r", "reset_conversation", "Reset"),
    ]

    def __init__(self, working_directory: str = ".", model_id: Optional[str] = None,
                 agent_mode: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.working_directory = os.path.abspath(working_directory)
        self.agent_mode = agent_mode
        self.registry = ModelRegistry.from_config(AVAILABLE_MODELS)
        model_id = model_id or model_config.model_id
        self.model = self.registry.resolve(model_id, provider_config.provider)
        self.dispatcher = UiDispatcher()
        self.chat_ui = TextualChatUI(self._mount_widget)
        self.backend = LocalBackend(self.working_directory)
        self.provider: Optional[ProviderClient] = None
        self.orchestrator: Optional[ConversationOrchestrator] = None
        self._store = SessionStore(app_config.sessions_dir)
        self._session: Optional[Session] = None
        self._was_busy = False
        self._spinner_idx = 0
        self._busy_since: Optional[float] = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="status-bar")
        yield VerticalScroll(id="output-scroll")
        yield Input(placeholder=" ❯ Ask about your project  (/help for commands)", id="user-input")
        yield Footer()

    # ============================================================
    # Output helpers
    # ============================================================

    def _mount_widget(self, widget: Static) -> None:
        scroll = self.query_one("#output-scroll", VerticalScroll)
        scroll.mount(widget)
        scroll.scroll_end(animate=False)

    def _log(self, markup: str) -> None:
        self._mount_widget(Static(Text.from_markup(markup)))

    # ============================================================
    # Lifecycle
    # ============================================================

    def on_mount(self) -> None:
        self._load_or_create_session()
        self._init_services()
        self.set_interval(0.05, self._tick)
        self._show_welcome()
        self.query_one("#user-input", Input).focus()

    def _init_services(self) -> None:
        transcript = Transcript(self._session.history if self._session else ())
        try:
            self.provider = create_provider(self.model.provider, provider_config, model_config, app_config)
        except ProviderError as e:
            self._log(f"\n   [bold #f85149]✗ Failed to initialize: {rich_escape(str(e))}[/bold #f85149]")
            return
        self.orchestrator = ConversationOrchestrator(
            provider=self.provider,
            ui=self.chat_ui,
            dispatcher=self.dispatcher,
            model=self.model,
            applier=FileChangeApplier(self.backend),
            backend=self.backend,
            agent_mode=self.agent_mode,
            thinking_enabled=model_config.enable_thinking,
            history_window=app_config.history_window,
            max_tool_continuations=app_config.max_tool_continuations,
            tool_max_workers=app_config.tool_max_workers,
            transcript=transcript,
        )

    def _show_welcome(self) -> None:
        mode = "agent" if self.agent_mode else "co-pilot"
        self._log(f"[bold #f0f6fc]{app_config.title}[/bold #f0f6fc]  [#6e7681]{rich_escape(self.working_directory)}[/#6e7681]")
        self._log(f"[#6e7681]model: {rich_escape(self.model.display_name)} · {mode} mode · "
                  f"{rich_escape(get_credentials_info())}[/#6e7681]")
        if self._session and self._session.history:
            self._log(f"[#6e7681]session: {rich_escape(self._session.name)} "
                      f"(resumed, {self._session.message_count} messages)[/#6e7681]")
        self._log("[#484f58]Type a request to begin  ·  /help for commands  ·  Ctrl+C to cancel[/#484f58]\n")

    def _tick(self) -> None:
        """Drain provider and tool callbacks on the UI thread."""
        self.dispatcher.run_pending()
        busy = self.orchestrator is not None and self.orchestrator.is_busy
        if busy and not self._was_busy:
            self._busy_since = time.time()
        if self._was_busy and not busy:
            self._busy_since = None
            self._save_session()
        self._was_busy = busy
        self._spinner_idx += 1
        self._update_status()

    def _update_status(self) -> None:
        parts = [self.model.display_name, "agent" if self.agent_mode else "co-pilot"]
        if self._session:
            name = self._session.name
            parts.append(name if len(name) <= 20 else name[:18] + "…")
        if self.orchestrator is not None and self.orchestrator.is_busy:
            frame = SPINNER_FRAMES[self._spinner_idx % len(SPINNER_FRAMES)]
            elapsed = f" {int(time.time() - self._busy_since)}s" if self._busy_since else ""
            depth = self.orchestrator.continuation_depth
            parts.append(f"{frame}{elapsed}" + (f" · round {depth}" if depth else ""))
        self.query_one("#status-bar", Static).update(" · ".join(parts))

    # ============================================================
    # Session Persistence
    # ============================================================

    def _load_or_create_session(self) -> None:
        existing = self._store.get_latest(self.working_directory)
        if existing and existing.history:
            self._session = existing
            logger.info(f"Resumed session: {existing.name} ({existing.session_id})")
        else:
            self._session = self._store.create_session(self.working_directory, self.model.model_id,
                                                       agent_mode=self.agent_mode)
            logger.info("Created new session")

    def _save_session(self) -> None:
        if not self._session or not self.orchestrator:
            return
        self._session.history = list(self.orchestrator.transcript.snapshot())
        self._session.model_id = self.model.model_id
        self._session.agent_mode = self.agent_mode
        try:
            self._store.save(self._session)
        except OSError as e:
            logger.error(f"Failed to save session: {e}")

    # ============================================================
    # Input Handling
    # ============================================================

    @on(Input.Submitted, "#user-input")
    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        self.query_one("#user-input", Input).value = ""
        if not text:
            return
        if text.startswith("/"):
            self._handle_command(text)
            return
        if self.orchestrator is None:
            self._log("   [#f85149]No provider available[/#f85149]")
            return
        if self._session and self._session.name == "default":
            try:
                self._session = self._store.auto_name_session(self._session, text)
            except OSError as e:
                logger.error(f"Failed to name session: {e}")
        self.orchestrator.send_prompt(text)

    def _pending_review(self, plans: bool) -> Optional[int]:
        def wanted(m: ChatMessage) -> bool:
            return m.status is MessageStatus.PENDING_REVIEW and bool(m.plan_steps if plans else m.file_changes)
        return self.chat_ui.last_position(wanted)

    def _handle_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip().lower() if len(parts) > 1 else ""
        orch = self.orchestrator

        if cmd == "/help":
            self._log(f"[#8b949e]{rich_escape(HELP_TEXT)}[/#8b949e]")
        elif orch is None:
            self._log("   [#f85149]No provider available[/#f85149]")
        elif cmd in ("/accept", "/discard"):
            pos = self._pending_review(plans=False)
            if pos is None:
                self._log("   [#6e7681]No proposed changes to review.[/#6e7681]")
            elif cmd == "/accept":
                results = orch.accept_actions(pos)
                ok = sum(1 for r in results if r.success)
                self._log(f"   [#3fb950]✓ Applied {ok}/{len(results)} changes[/#3fb950]")
            else:
                orch.discard_actions(pos)
        elif cmd == "/plan":
            pos = self._pending_review(plans=True)
            if pos is None:
                self._log("   [#6e7681]No plan to review.[/#6e7681]")
            elif arg in ("", "accept"):
                orch.accept_plan(pos)
            else:
                orch.discard_plan(pos)
        elif cmd == "/step":
            try:
                if arg in ("", "accept"):
                    orch.accept_step()
                else:
                    orch.discard_step()
            except PlanError as e:
                self._log(f"   [#e3b341]{rich_escape(str(e))}[/#e3b341]")
        elif cmd == "/retry":
            if orch.retry() is None:
                self._log("   [#6e7681]Nothing to retry.[/#6e7681]")
        elif cmd == "/cancel":
            orch.cancel()
        elif cmd == "/agent":
            self.agent_mode = not self.agent_mode
            orch.agent_mode = self.agent_mode
            orch.plan_executor.agent_mode = self.agent_mode
            orch.system_prompt = compose_system_prompt(self.agent_mode, self.working_directory)
            self._log(f"   [#58a6ff]Agent mode {'on' if self.agent_mode else 'off'}[/#58a6ff]")
        elif cmd == "/models":
            self._show_models()
        elif cmd == "/sessions":
            for sess in self._store.list_sessions(self.working_directory):
                self._log(f"   [#8b949e]{rich_escape(sess.name)}[/#8b949e] "
                          f"[#6e7681]{sess.message_count} messages · {sess.updated_at[:19]}[/#6e7681]")
        elif cmd == "/reset":
            self.action_reset_conversation()
        else:
            self._log(f"   [#e3b341]Unknown command: {rich_escape(cmd)}[/#e3b341]")

    def _show_models(self) -> None:
        try:
            fetched = self.provider.fetch_models()
        except ProviderError as e:
            self._log(f"   [#f85149]{rich_escape(str(e))}[/#f85149]")
            return
        self.registry.merge(fetched)
        table = Table(show_header=True, header_style="bold #8b949e", box=None)
        table.add_column("model")
        table.add_column("name")
        for m in self.registry.for_provider(self.model.provider):
            marker = "● " if m.model_id == self.model.model_id else "  "
            table.add_row(marker + m.model_id, m.display_name)
        self._mount_widget(Static(table))

    # ============================================================
    # Actions
    # ============================================================

    def action_cancel_or_quit(self) -> None:
        if self.orchestrator is not None and self.orchestrator.is_busy:
            self.orchestrator.cancel()
            self._log("   [italic #e3b341]cancelled[/italic #e3b341]")
            return
        self._save_session()
        if self.provider is not None:
            self.provider.close()
        self.exit()

    def action_clear_screen(self) -> None:
        self.chat_ui.clear()

    def action_reset_conversation(self) -> None:
        if self.orchestrator is None or self.orchestrator.is_busy:
            return
        self._save_session()
        self.orchestrator.transcript.clear()
        self._session = self._store.create_session(self.working_directory, self.model.model_id,
                                                   agent_mode=self.agent_mode)
        self.chat_ui.clear()
        self._log("   [#3fb950]✓ Conversation reset.[/#3fb950]")


# ============================================================
# Entry Point
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="Codex Agent - streaming coding assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                         Run in current directory
  python main.py -d ~/my-project         Run in a specific project directory
  python main.py -m qwen3-235b-a22b      Use a specific model
  python main.py --agent                 Apply proposed changes without review
        """,
    )
    parser.add_argument(
        "-d", "--directory",
        default=app_config.working_directory,
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "-m", "--model",
        default=None,
        help=f"Model id (default: {model_config.model_id})",
    )
    parser.add_argument(
        "--agent",
        action="store_true",
        default=app_config.agent_mode,
        help="Agent mode: apply proposed file changes immediately",
    )

    args = parser.parse_args()

    working_dir = os.path.abspath(args.directory)
    if not os.path.isdir(working_dir):
        print(f"Error: {working_dir} is not a directory")
        sys.exit(1)

    app = CodexAgentApp(working_directory=working_dir, model_id=args.model, agent_mode=args.agent)
    app.run()


if __name__ == "__main__":
    main()
