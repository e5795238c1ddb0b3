"""
ToolBridge CLI - Interactive chat with an MCP tool server.

Run `toolbridge` to start the REPL, or `toolbridge "your prompt"` for a
single tool-enabled query.
"""

import json
import sys
from typing import Optional

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory, InMemoryHistory
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from toolbridge import __version__
from toolbridge.cli.completer import ToolBridgeCompleter
from toolbridge.cli.logs import setup_logging
from toolbridge.core.orchestrator import LoopEvent, Orchestrator, RunResult
from toolbridge.mcp.schema import Role
from toolbridge.mcp.session import CallError, ConnectError, Session, SessionState
from toolbridge.providers.base import Provider, ProviderError, ProviderFactory
from toolbridge.validation.config import Config, ConfigError, parse_model_name

console = Console()


def build_session(config: Config) -> Session:
    server = config.merged.server
    return Session(
        env=server.env,
        handshake_timeout=server.handshake_timeout,
        call_timeout=server.call_timeout,
    )


def build_provider(config: Config) -> Provider:
    model = config.merged.model
    try:
        return ProviderFactory.create(
            model.provider,
            model.name,
            base_url=model.base_url,
            api_key=model.api_key,
            think=model.think,
            timeout=model.timeout,
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e


def render_event(event: LoopEvent) -> None:
    """Print tool-call progress as the loop runs."""
    if event.kind == "tool_call":
        name = event.call.name or "<missing name>"
        args = json.dumps(event.call.arguments)
        console.print(f"[cyan]  → {name}[/cyan] [dim]{escape(args)}[/dim]")
    elif event.kind == "tool_result":
        content = event.message.content
        failed = content.startswith('{"error"')
        style = "red" if failed else "green"
        preview = content if len(content) <= 200 else content[:200] + "..."
        console.print(f"[{style}]  ← {escape(preview)}[/{style}]")


def render_result(result: RunResult) -> None:
    if result.reached_round_limit:
        console.print(
            f"[yellow]Reached max tool call rounds ({result.rounds}). Ending conversation.[/yellow]"
        )
        return
    console.print()
    console.print(Markdown(result.answer or ""))
    console.print()
    console.print(f"[dim]─ {result.rounds} round(s) · {len(result.history)} messages[/dim]")


class ToolBridgeREPL:
    """
    Interactive ToolBridge session.

    Holds one tool server session and one provider. Every plain line is a
    prompt for the tool-calling loop; lines starting with / are commands.
    """

    def __init__(self, config: Config, server_command: Optional[str] = None):
        self.config = config
        self.server_command = server_command or config.merged.server.command
        self.session = build_session(config)
        self.session.add_listener(self._on_state_change)
        self.provider: Optional[Provider] = None
        self.last_result: Optional[RunResult] = None
        self.running = True
        self._prompt = PromptSession(
            history=self._make_history(),
            completer=ToolBridgeCompleter(lambda: [t.name for t in self.session.tools]),
        )

    @staticmethod
    def _make_history():
        history_file = Config.GLOBAL_CONFIG_DIR / "input_history"
        try:
            history_file.parent.mkdir(parents=True, exist_ok=True)
            return FileHistory(str(history_file))
        except OSError:
            return InMemoryHistory()

    def _on_state_change(self, state: SessionState) -> None:
        colors = {
            SessionState.CONNECTED: "green",
            SessionState.CONNECTING: "blue",
            SessionState.DISCONNECTED: "yellow",
        }
        console.print(f"[{colors[state]}]● {state.value}[/{colors[state]}]")

    def _get_provider(self) -> Provider:
        if self.provider is None:
            self.provider = build_provider(self.config)
        return self.provider

    # ── Output ────────────────────────────────────────────────────────────

    def _print_banner(self):
        info = Text()
        info.append("ToolBridge", style="bold blue")
        info.append(f"  v{__version__}", style="bold cyan")
        info.append("  |  ", style="dim")
        model = self.config.merged.model
        info.append(f"Model: {model.provider}/{model.name}", style="dim")
        console.print(info)
        console.print("  [dim]/connect to start the tool server, then type a prompt. /help for commands.[/dim]")
        console.print()

    def _print_help(self):
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_row("/connect [command]", "Start the tool server (default from config)")
        table.add_row("/disconnect", "Stop the tool server")
        table.add_row("/status", "Connection state, server and model")
        table.add_row("/tools", "List the server's tools")
        table.add_row("/tools info <name>", "Show a tool's parameter schema")
        table.add_row("/call <name> <json>", "Call a tool directly")
        table.add_row("/history", "Show the last conversation")
        table.add_row("/model <provider/name>", "Switch model")
        table.add_row("/clear", "Clear screen")
        table.add_row("/exit", "Quit")
        console.print(table)

    def _print_status(self):
        model = self.config.merged.model
        lines = [
            f"[bold]State:[/bold]   {self.session.state.value}",
            f"[bold]Command:[/bold] {self.session.launch_command or self.server_command}",
        ]
        if self.session.is_connected:
            server = self.session.server_info
            lines.append(f"[bold]Server:[/bold]  {server.get('name', '?')} {server.get('version', '')}")
            lines.append(f"[bold]Protocol:[/bold] {self.session.protocol_version}  pid {self.session.pid}")
            lines.append(f"[bold]Tools:[/bold]   {len(self.session.tools)}")
        lines.append(f"[bold]Model:[/bold]   {model.provider}/{model.name} @ {self._get_provider().base_url}")
        console.print(Panel("\n".join(lines), title="Status", border_style="blue"))

    def _print_history(self):
        if self.last_result is None:
            console.print("[dim]No conversation yet.[/dim]")
            return
        for message in self.last_result.history:
            style = {Role.USER: "green", Role.ASSISTANT: "blue", Role.TOOL: "cyan"}[message.role]
            label = message.role.value
            if message.role is Role.TOOL and message.tool_name:
                label = f"tool:{message.tool_name}"
            console.print(f"[bold {style}]{label}[/bold {style}] {escape(message.content)}")
            for call in message.tool_calls:
                console.print(f"    [dim]calls {call.name} {escape(json.dumps(call.arguments))}[/dim]")

    # ── Commands ──────────────────────────────────────────────────────────

    def connect(self, command: Optional[str] = None) -> bool:
        command = command or self.server_command
        try:
            with console.status(f"[bold blue]Starting {command}...[/bold blue]"):
                self.session.connect(command)
                tools = self.session.list_tools()
        except ConnectError as e:
            console.print(f"[red]Connection failed: {e}[/red]")
            return False
        except CallError as e:
            console.print(f"[yellow]Connected, but listing tools failed: {e}[/yellow]")
            return True

        self.server_command = command
        console.print(f"[green]Found {len(tools)} tool(s):[/green]")
        for tool in tools:
            console.print(f"  {tool.prompt_line()}", markup=False, highlight=False)
        return True

    def _handle_tools(self, args: str):
        parts = args.split()
        if parts and parts[0] == "info":
            name = parts[1] if len(parts) > 1 else ""
            tool = next((t for t in self.session.tools if t.name == name), None)
            if tool is None:
                console.print(f"[yellow]Unknown tool: {name or '(none given)'}[/yellow]")
                return
            console.print(tool.full_schema_text(), markup=False)
            return

        try:
            tools = self.session.list_tools()
        except CallError as e:
            console.print(f"[red]{e}[/red]")
            return
        console.print(f"[bold]Available tools ({len(tools)}):[/bold]")
        for tool in tools:
            console.print(f"  {tool.prompt_line()}", markup=False, highlight=False)

    def _handle_call(self, args: str):
        name, _, raw_args = args.strip().partition(" ")
        if not name:
            console.print("[yellow]Usage: /call <name> <json arguments>[/yellow]")
            return
        try:
            arguments = json.loads(raw_args) if raw_args.strip() else {}
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid JSON: {e}[/red]")
            return
        if not isinstance(arguments, dict):
            console.print("[red]Arguments must be a JSON object[/red]")
            return

        try:
            result = self.session.invoke(name, arguments)
        except CallError as e:
            console.print(f"[red]Tool call failed: {e}[/red]")
            return
        if result.is_error:
            console.print(f"[red]Tool reported an error:[/red] {escape(result.text)}")
        else:
            console.print(result.text, markup=False)

    def _switch_model(self, model_name: str):
        self.config.override("model", **parse_model_name(model_name))
        if self.provider is not None:
            self.provider.close()
            self.provider = None
        model = self.config.merged.model
        console.print(f"[green]Model set to {model.provider}/{model.name}[/green]")

    def _handle_command(self, cmd: str) -> bool:
        """Handle a slash command. Returns True if should continue."""
        parts = cmd.split(maxsplit=1)
        command = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""

        if command in ("/exit", "/quit", "/q"):
            self.running = False
            return False
        elif command in ("/help", "/?"):
            self._print_help()
        elif command == "/connect":
            self.connect(args.strip() or None)
        elif command == "/disconnect":
            self.session.disconnect()
        elif command == "/status":
            self._print_status()
        elif command == "/tools":
            self._handle_tools(args)
        elif command == "/call":
            self._handle_call(args)
        elif command == "/history":
            self._print_history()
        elif command == "/model":
            if args:
                self._switch_model(args.strip())
            else:
                model = self.config.merged.model
                console.print(f"Current model: {model.provider}/{model.name}")
        elif command == "/clear":
            console.clear()
        else:
            console.print(f"[yellow]Unknown command: {command}. Type /help.[/yellow]")
        return True

    def execute_prompt(self, prompt: str) -> Optional[RunResult]:
        if not self.session.is_connected:
            console.print("[yellow]Not connected. Use /connect first.[/yellow]")
            return None

        orchestrator = Orchestrator(
            self.session,
            self._get_provider(),
            max_rounds=self.config.merged.loop.max_rounds,
            on_event=render_event,
        )
        try:
            result = orchestrator.run(prompt)
        except ProviderError as e:
            console.print(f"[red]Model error: {e}[/red]")
            return None

        self.last_result = result
        render_result(result)
        return result

    def run(self):
        """Run the interactive REPL."""
        self._print_banner()
        try:
            while self.running:
                try:
                    user_input = self._prompt.prompt("> ").strip()
                except KeyboardInterrupt:
                    continue
                except EOFError:
                    break

                if not user_input:
                    continue
                if user_input.startswith("/"):
                    try:
                        if not self._handle_command(user_input):
                            break
                    except ConfigError as e:
                        console.print(f"[red]Configuration error: {e}[/red]")
                    continue
                try:
                    self.execute_prompt(user_input)
                except ConfigError as e:
                    console.print(f"[red]Configuration error: {e}[/red]")
        finally:
            self.session.disconnect()
            if self.provider is not None:
                self.provider.close()
            console.print("[dim]Bye.[/dim]")


def run_once(config: Config, server_command: str, prompt: str) -> int:
    """Connect, answer one prompt, disconnect. Returns a process exit code."""
    with build_session(config) as session:
        try:
            with console.status("[bold blue]Connecting...[/bold blue]"):
                session.connect(server_command)
                session.list_tools()
        except (ConnectError, CallError) as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

        try:
            provider = build_provider(config)
        except ConfigError as e:
            console.print(f"[red]Configuration error: {e}[/red]")
            return 1

        try:
            orchestrator = Orchestrator(
                session,
                provider,
                max_rounds=config.merged.loop.max_rounds,
                on_event=render_event,
            )
            result = orchestrator.run(prompt)
        except ProviderError as e:
            console.print(f"[red]Model error: {e}[/red]")
            return 1
        finally:
            provider.close()

    render_result(result)
    return 0


@click.command()
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--init", "-i", is_flag=True, help="Write a default ~/.toolbridge/config.yaml and exit")
@click.option("--server-command", "-s", default=None, help="Command that launches the tool server")
@click.option("--model", "-m", default=None, help="Model as provider/name (e.g. ollama/llama3.1:8b)")
@click.option("--base-url", default=None, help="Model API base URL (default: OLLAMA_BASE_URL or config)")
@click.option("--max-rounds", type=click.IntRange(min=1), default=None, help="Tool-calling round limit")
@click.option("--log-level", default=None, help="Log level for stderr logging")
@click.argument("prompt", required=False, nargs=-1)
def cli(
    version: bool,
    init: bool,
    server_command: Optional[str],
    model: Optional[str],
    base_url: Optional[str],
    max_rounds: Optional[int],
    log_level: Optional[str],
    prompt: tuple,
) -> None:
    """
    ToolBridge - chat with a model that can call MCP tools.

    Run without arguments to start interactive mode.

    \b
    Examples:
        toolbridge                              # Start interactive chat
        toolbridge "join a and b"               # Run single prompt
        toolbridge -s "npx some-mcp-server"     # Use another tool server
    """
    if version:
        console.print(f"ToolBridge v{__version__}")
        return

    if init:
        path = Config.create_default_global()
        console.print(f"[green]Config at {path}[/green]")
        return

    try:
        config = Config.load()
        if model:
            config.override("model", **parse_model_name(model))
        config.override("model", base_url=base_url)
        config.override("loop", max_rounds=max_rounds)
        config.override("server", command=server_command)
        config.override("logging", level=log_level)
        setup_logging(config.merged.logging.level)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)

    command = config.merged.server.command

    if prompt:
        sys.exit(run_once(config, command, " ".join(prompt)))

    repl = ToolBridgeREPL(config, server_command=command)
    repl.run()


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
