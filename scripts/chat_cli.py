#!/usr/bin/env python3
"""Interactive terminal chat for the agent chat service."""

import asyncio
import os
import sys

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from app.agents.registry import get_agent_by_id, get_all_agents
from app.clients.chat_api import ChatAPIClient, ChatAPIConfig
from app.services.chat_session import ChatSession
from app.services.errors import ChatError, get_localized_error_message
from app.storage import get_storage
from app.utils.logging import LogConfig, setup_logging


class ChatCLI:
    """Interactive chat interface over a ChatSession."""

    def __init__(self, base_url: str = "http://localhost:8000", locale: str = "en"):
        """Initialize chat CLI."""
        self.console = Console()
        self.locale = locale
        self.api = ChatAPIClient(ChatAPIConfig(base_url=base_url))
        self.session = ChatSession(self.api, get_storage())

    async def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Agent Chat[/bold blue]\n"
                "Type your messages to chat with the selected agent.\n"
                "Commands: /help, /agents, /agent <id>, /history, /open <id>, /new, /stats, /quit",
                border_style="blue",
            )
        )

        if not await self.api.health():
            self.console.print(f"[red]Cannot connect to the service at {self.api.config.base_url}.[/red]")
            await self.api.aclose()
            return

        self.console.print("[green]Connected to agent chat service[/green]\n")
        self._show_agents()

        try:
            while True:
                user_input = Prompt.ask(f"\n[bold cyan]You[/bold cyan] [dim]({self.session.agent_id})[/dim]")
                command, _, argument = user_input.strip().partition(" ")

                if command.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command == "/help":
                    self._show_help()
                elif command == "/agents":
                    self._show_agents()
                elif command == "/agent":
                    self._switch_agent(argument.strip())
                elif command == "/history":
                    await self._show_history()
                elif command == "/open":
                    await self._open_conversation(argument.strip())
                elif command == "/new":
                    self.session.new_conversation()
                    self.console.print("[yellow]Started a new conversation[/yellow]")
                elif command == "/stats":
                    self._show_stats()
                elif user_input.strip():
                    await self._send_message(user_input.strip())

        except KeyboardInterrupt:
            pass
        finally:
            self.session.close()
            await self.api.aclose()
            self.console.print("\n[yellow]Goodbye![/yellow]")

    async def _send_message(self, message: str) -> None:
        """Stream the agent's reply, then persist the pair."""
        agent = get_agent_by_id(self.session.agent_id)
        title = f"[bold green]{agent.icon} {agent.name}[/bold green]" if agent else "[bold green]Assistant[/bold green]"

        with Live(Panel("[dim]Thinking...[/dim]", title=title, border_style="green"), console=self.console) as live:

            def on_chunk(text: str) -> None:
                live.update(Panel(Markdown(text), title=title, border_style="green", padding=(1, 2)))

            try:
                persisted = await self.session.send(message, on_chunk=on_chunk)
            except ChatError as e:
                message_text = get_localized_error_message(e, self.locale)
                live.update(Panel(f"[red]{message_text}[/red]", title=title, border_style="red"))
                return

        self.console.print(f"[dim]Saved to conversation {persisted.conversation_id}[/dim]")

    def _switch_agent(self, agent_id: str) -> None:
        try:
            self.session.switch_agent(agent_id)
        except ValueError as e:
            self.console.print(f"[red]{e}[/red]")
            return
        self.console.print(f"[green]Now chatting with {agent_id}[/green]")

    async def _show_history(self) -> None:
        """List stored conversations."""
        try:
            conversations = await self.session.storage.list_conversations()
        except Exception as e:
            self.console.print(f"[red]Could not load conversations: {e}[/red]")
            return

        table = Table(title="Conversations")
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Last message")
        table.add_column("Agent")
        for conversation in conversations:
            table.add_row(
                conversation.id,
                conversation.title,
                (conversation.last_message or "")[:40],
                conversation.last_agent_id or "",
            )
        self.console.print(table)

    async def _open_conversation(self, conversation_id: str) -> None:
        if not conversation_id:
            self.console.print("[red]Usage: /open <conversation id>[/red]")
            return
        await self.session.open_conversation(conversation_id)
        for message in self.session.store.messages:
            style = "cyan" if message.role == "user" else "green"
            self.console.print(f"[bold {style}]{message.role}[/bold {style}]: {message.content}")

    def _show_agents(self) -> None:
        """Show available agents."""
        agent_list = "\n".join(f"• {agent.icon} [bold]{agent.id}[/bold] - {agent.description}" for agent in get_all_agents())
        self.console.print(Panel(agent_list, title="[yellow]Available Agents[/yellow]", border_style="yellow"))

    def _show_stats(self) -> None:
        stats = self.session.error_stats.get_stats()
        by_kind = ", ".join(f"{kind}: {count}" for kind, count in stats["errors_by_kind"].items()) or "none"
        self.console.print(f"[bold]Errors this session:[/bold] {stats['total_errors']} ({by_kind})")

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /agents - List available agents
• /agent <id> - Switch agent (e.g. /agent researchAgent)
• /history - List saved conversations
• /open <id> - Continue a saved conversation
• /new - Start a new conversation
• /stats - Show error counts for this session
• /quit or /exit - Exit the chat

[bold]Tips:[/bold]
• Each question and answer is saved together once the answer is complete
• Temporary failures while saving are retried automatically
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    setup_logging(LogConfig(level="WARNING"))
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

    chat = ChatCLI(base_url, locale=os.getenv("CHAT_LOCALE", "en"))
    asyncio.run(chat.start())


if __name__ == "__main__":
    main()
