"""Interactive terminal chat for the coding assistant."""

import argparse
import asyncio
import json
import sys
import threading
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from codeloop import __version__
from codeloop.clients.anthropic import AnthropicClient, AnthropicConfig
from codeloop.models.agent import AgentConfig, AgentResponse, LoopEvent
from codeloop.models.llm import LLMUsage
from codeloop.models.session import Session
from codeloop.services.agent import ConversationLoop
from codeloop.services.cost import CostBreakdown, CostReporter, format_cost, format_token_count
from codeloop.tools import ToolContext, ToolsRegistry, create_default_registry
from codeloop.utils.logging import LOG_LEVELS, LogConfig, get_logger, setup_logging

logger = get_logger(__name__)

EXIT_COMMANDS = {"/quit", "/exit", "quit", "exit"}


class ChatCLI:
    """Interactive chat interface for the coding assistant."""

    def __init__(
        self,
        client: AnthropicClient,
        registry: ToolsRegistry,
        config: AgentConfig,
        workspace: Path,
        console: Console | None = None,
    ):
        """Initialize chat CLI."""
        self.console = console or Console()
        self.client = client
        self.registry = registry
        self.config = config
        self.workspace = workspace
        self.session = Session()
        self.cost_reporter = CostReporter()
        self.loop = ConversationLoop(
            backend=client,
            registry=registry,
            config=config,
            on_text=self._print_text,
            on_event=self._print_event,
        )

    async def run(self) -> None:
        """Run the interactive chat session until the user quits."""
        self.console.print(
            Panel.fit(
                f"[bold blue]codeloop {__version__}[/bold blue]\n"
                f"Model: {self.config.model}\n"
                f"Workspace: {self.workspace}\n"
                "Commands: /help, /clear, /tools, /cost, /status, /quit",
                border_style="blue",
            )
        )

        try:
            while True:
                user_input = await self._read_input("\n[bold cyan]You[/bold cyan]")
                user_input = user_input.strip()

                if not user_input:
                    continue
                if user_input.lower() in EXIT_COMMANDS:
                    break
                if user_input.startswith("/"):
                    self._handle_command(user_input)
                    continue

                try:
                    await self._send_message(user_input)
                except Exception as e:
                    logger.error(f"Unexpected error while handling message: {e}", exc_info=True)
                    self.console.print(f"[red]Error: {escape(str(e))}[/red]")

        except (KeyboardInterrupt, EOFError, asyncio.CancelledError):
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            await self.client.client.close()

    async def _read_input(self, prompt: str) -> str:
        """Read a line without blocking the event loop.

        The prompt runs on a daemon thread so an interrupted read never keeps
        the process alive at exit.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def deliver(result: str | None, error: Exception | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result or "")

        def reader() -> None:
            try:
                line = Prompt.ask(prompt, console=self.console)
            except Exception as e:
                loop.call_soon_threadsafe(deliver, None, e)
            else:
                loop.call_soon_threadsafe(deliver, line, None)

        threading.Thread(target=reader, name="codeloop-input", daemon=True).start()
        return await future

    async def _send_message(self, message: str) -> None:
        try:
            self.client.validate_message_tokens(message)
        except ValueError as e:
            self.console.print(f"[red]{escape(str(e))}[/red]")
            return

        self.console.print("\n[bold green]Assistant[/bold green]")
        response = await self.loop.process_message(message)
        self._display_response(response)

    def _display_response(self, response: AgentResponse) -> None:
        cost = self._cost_of(response.model, response.usage)
        self.session.record_message(response.usage, cost.total_cost, success=response.success)

        if not response.success:
            self.console.print(Panel(escape(response.content), title="[red]Request failed[/red]", border_style="red"))
        elif response.stop_reason == "max_iterations":
            self.console.print("\n[yellow]Stopped at the tool iteration limit.[/yellow]")

        if cost.total_cost > 0:
            self.console.print(
                f"\n[dim]{format_token_count(response.usage.total_input_tokens)} in, "
                f"{format_token_count(response.usage.output_tokens)} out, "
                f"{response.response_time_ms}ms[/dim]  [green]Total cost: {cost.formatted_cost}[/green]"
            )

    def _cost_of(self, model: str, usage: LLMUsage) -> CostBreakdown:
        return self.cost_reporter.calculate_cost(
            model,
            usage.input_tokens,
            usage.output_tokens,
            cache_creation_input_tokens=usage.cache_creation_input_tokens,
            cache_read_input_tokens=usage.cache_read_input_tokens,
        )

    def _print_text(self, text: str) -> None:
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    def _print_event(self, event: LoopEvent) -> None:
        if event.kind == "tool_start":
            arguments = json.dumps(event.detail.get("input"), ensure_ascii=False)
            if len(arguments) > 120:
                arguments = arguments[:117] + "..."
            self.console.print(f"\n[dim]> {event.detail['name']} {escape(arguments)}[/dim]", highlight=False)
        elif event.kind == "tool_end" and not event.detail.get("success"):
            error = (event.detail.get("error") or "").splitlines()
            summary = error[0] if error else "failed"
            self.console.print(
                f"[dim red]  {event.detail['name']} failed: {escape(summary)}[/dim red]", highlight=False
            )

    def _handle_command(self, command: str) -> None:
        name = command.split()[0].lower()
        if name == "/help":
            self._show_help()
        elif name == "/clear":
            self.loop.reset()
            self.session.reset()
            self.console.print("[yellow]Conversation cleared[/yellow]")
        elif name == "/tools":
            self._show_tools()
        elif name == "/cost":
            self._show_cost()
        elif name == "/status":
            self._show_status()
        else:
            self.console.print(f"[red]Unknown command: {escape(name)}[/red] (try /help)")

    def _show_help(self) -> None:
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /clear - Forget the conversation and reset session totals
• /tools - List the tools the assistant can use
• /cost - Show token usage and cost for this session
• /status - Show model, workspace and session details
• /quit or /exit - Exit the chat

[bold]Tips:[/bold]
• Ask about the project: "What does this repository do?"
• Ask for changes: "Add a --verbose flag to the CLI"
• Paths are relative to the workspace directory
        """
        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))

    def _show_tools(self) -> None:
        table = Table(title="Tools")
        table.add_column("Name", style="cyan")
        table.add_column("Description")
        for definition in self.registry.get_tool_definitions():
            table.add_row(definition.name, definition.description)
        self.console.print(table)

    def _show_cost(self) -> None:
        cost = self._cost_of(self.config.model, self.session.usage)
        body = f"{cost.detailed_cost}\nMessages: {self.session.message_count}"
        if not cost.known:
            body += f"\nTracked cost: {format_cost(self.session.total_cost)}"
        self.console.print(Panel(body, title="[green]Session cost[/green]", border_style="green"))

    def _show_status(self) -> None:
        status = self.session.as_dict()
        lines = [
            f"Model: {self.config.model}"
            + ("" if self.cost_reporter.is_supported(self.config.model) else " (no pricing data)"),
            f"Workspace: {self.workspace}",
            f"Session: {status['session_id']}",
            f"Messages: {status['message_count']} ({status['failed_messages']} failed)",
            f"History: {len(self.loop.history)} messages retained",
            f"Max tool iterations: {self.config.max_iterations}",
        ]
        self.console.print(Panel("\n".join(lines), title="[cyan]Status[/cyan]", border_style="cyan"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="codeloop", description="Terminal AI coding assistant")
    parser.add_argument("--model", help="Model id (default: $CODELOOP_MODEL or the built-in default)")
    parser.add_argument("--workspace", default=".", help="Directory the tools operate in")
    parser.add_argument("--max-iterations", type=int, help="Maximum tool iterations per message")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: $LOG_LEVEL or WARNING)",
    )
    parser.add_argument("--no-history", action="store_true", help="Do not carry history between messages")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the chat CLI."""
    args = build_parser().parse_args(argv)
    setup_logging(LogConfig(level=args.log_level) if args.log_level else None)
    console = Console()

    workspace = Path(args.workspace).expanduser().resolve()
    if not workspace.is_dir():
        console.print(f"[red]Workspace is not a directory: {workspace}[/red]")
        return 1

    try:
        config = AgentConfig.from_env(
            model=args.model,
            max_iterations=args.max_iterations,
            retain_history=not args.no_history,
        )
        client = AnthropicClient(config=AnthropicConfig(model=config.model, max_tokens=config.max_tokens))
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 1

    registry = create_default_registry(ToolContext(workspace=workspace))
    chat = ChatCLI(client, registry, config, workspace, console=console)

    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
