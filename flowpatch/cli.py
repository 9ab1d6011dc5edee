from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.table import Table

from flowpatch import __version__
from flowpatch.engine.credentials import CredentialStore
from flowpatch.engine.executor import WorkflowExecutionResult, WorkflowExecutor
from flowpatch.engine.integrations import HttpIntegration
from flowpatch.graph.serialization import GraphImportError, load_graph_file, save_graph_file
from flowpatch.history_store import ExecutionHistoryStore
from flowpatch.llm_client import build_llm_client
from flowpatch.logging_utils import configure_logging
from flowpatch.planner.planner import WorkflowPlanner
from flowpatch.session import WorkflowSession
from flowpatch.settings import load_settings


LOGGER = logging.getLogger(__name__)


class SlashCommandCompleter(Completer):
    def __init__(
        self,
        root_commands_provider: Callable[[], Sequence[str]],
        subcommands_provider: Callable[[str], Sequence[str]],
    ) -> None:
        self._root_commands_provider = root_commands_provider
        self._subcommands_provider = subcommands_provider

    def get_completions(self, document, complete_event):  # type: ignore[override]
        text_before_cursor = document.text_before_cursor
        if not text_before_cursor.startswith("/") or "\n" in text_before_cursor:
            return

        parts = text_before_cursor.strip().split()
        if not parts:
            return

        root = parts[0]
        root_commands = sorted(set(self._root_commands_provider()))
        if len(parts) == 1 and not text_before_cursor.endswith(" "):
            for command in root_commands:
                if command.startswith(root):
                    yield Completion(command, start_position=-len(root))
            return

        if root not in root_commands:
            return

        for option in sorted(set(self._subcommands_provider(root))):
            candidate = f"{root} {option}"
            if candidate.startswith(text_before_cursor):
                yield Completion(candidate, start_position=-len(text_before_cursor))


class FlowPatchCLI:
    """Interactive editor: free text is planned into a patch, slash commands manage the workflow."""

    def __init__(self) -> None:
        self.console = Console(no_color=True, highlight=False, markup=False)
        self.settings = load_settings()
        self.session = WorkflowSession(undo_limit=self.settings.undo_limit)
        self.planner = WorkflowPlanner(llm_client=build_llm_client(self.settings))
        self.executor = WorkflowExecutor(
            credentials=CredentialStore.from_env(),
            http=HttpIntegration(timeout_seconds=self.settings.http_timeout_seconds),
        )
        self.history = ExecutionHistoryStore(self.settings.sqlite_path)
        self._prompt_session = self._build_prompt_session()

    def _build_prompt_session(self) -> PromptSession[str]:
        key_bindings = KeyBindings()

        @key_bindings.add("enter")
        def _(event) -> None:
            event.current_buffer.validate_and_handle()

        @key_bindings.add("escape", "enter")
        def _(event) -> None:
            event.current_buffer.insert_text("\n")

        @key_bindings.add("c-j")
        def _(event) -> None:
            event.current_buffer.insert_text("\n")

        return PromptSession(
            multiline=True,
            completer=SlashCommandCompleter(
                root_commands_provider=self._root_commands,
                subcommands_provider=self._subcommand_options,
            ),
            complete_while_typing=True,
            key_bindings=key_bindings,
            history=InMemoryHistory(),
            prompt_continuation=lambda width, line_number, is_soft_wrap: "... ",
            bottom_toolbar=self._get_footer,
        )

    def _get_footer(self) -> str:
        planner = self.settings.planner if self.planner.uses_llm else "rules"
        return f"{self.session.name} | {len(self.session.nodes)} nodes | planner: {planner}"

    def _print_kv_lines(self, title: str, rows: list[tuple[str, str]]) -> None:
        self.console.print(title)
        for key, value in rows:
            self.console.print(f"- {key}: {value}")
        self.console.print()

    def _print_list(self, title: str, items: list[str]) -> None:
        self.console.print(title)
        if not items:
            self.console.print("- (none)")
        else:
            for item in items:
                self.console.print(f"- {item}")
        self.console.print()

    async def _handle_command(self, command_line: str) -> bool:
        parts = command_line.strip().split(maxsplit=1)
        command = parts[0].lower()
        argument = parts[1].strip() if len(parts) > 1 else ""

        if command == "/quit":
            self.console.print("Goodbye.")
            return True

        if command == "/show":
            self.console.print(self.session.summary())
            self.console.print()
            return False

        if command == "/nodes":
            self._print_nodes()
            return False

        if command == "/validate":
            result = self.session.validate()
            self._print_list("Errors", result.errors)
            self._print_list("Warnings", result.warnings)
            return False

        if command == "/run":
            await self._handle_run_command(argument)
            return False

        if command == "/history":
            self._print_history()
            return False

        if command == "/export":
            self._handle_export_command(argument)
            return False

        if command == "/import":
            self._handle_import_command(argument)
            return False

        if command == "/undo":
            self.console.print("Undone." if self.session.undo() else "Nothing to undo.")
            return False

        if command == "/redo":
            self.console.print("Redone." if self.session.redo() else "Nothing to redo.")
            return False

        if command == "/name":
            if not argument:
                self.console.print(f"Name: {self.session.name}")
            else:
                self.session.rename(argument)
                self.console.print(f"Renamed to {self.session.name}.")
            return False

        if command == "/new":
            self.session.reset()
            self.console.print("Started a new workflow.")
            return False

        if command == "/help":
            self._print_help()
            return False

        self.console.print("Unknown command. Use /help for available commands.")
        return False

    async def _handle_run_command(self, argument: str) -> None:
        payload: object = {}
        if argument:
            try:
                payload = json.loads(argument)
            except json.JSONDecodeError as exc:
                self.console.print(f"Invalid JSON payload: {exc}")
                return

        result = await self.executor.execute(self.session.nodes, self.session.edges, payload)
        execution_id = self.history.record(self.session.name, result, payload)
        self._print_execution(result, execution_id)

    def _handle_export_command(self, argument: str) -> None:
        if not argument:
            self.console.print(json.dumps(self.session.export(), indent=2, ensure_ascii=False))
            return
        path = Path(argument).expanduser()
        save_graph_file(path, self.session.nodes, self.session.edges, self.session.name)
        self.console.print(f"Exported to {path}.")

    def _handle_import_command(self, argument: str) -> None:
        if not argument:
            self.console.print("Usage: /import <path>")
            return
        path = Path(argument).expanduser()
        try:
            nodes, edges, name = load_graph_file(path)
        except (OSError, GraphImportError) as exc:
            self.console.print(f"Import failed: {exc}")
            return
        self.session.load(
            {
                "name": name,
                "nodes": [node.to_dict() for node in nodes],
                "edges": [edge.to_dict() for edge in edges],
            }
        )
        self.console.print(f"Imported {len(nodes)} nodes and {len(edges)} edges.")

    async def _handle_user_message(self, user_input: str) -> None:
        plan = await self.planner.plan(user_input, self.session.summary(), self.session.nodes)
        if plan.dropped:
            self._print_list("Dropped", plan.dropped)
        if plan.is_empty:
            self.console.print("> No workflow changes needed.")
            self.console.print()
            return

        result = self.session.apply(plan.patch)
        if not result.ok:
            self._print_list("Patch rejected", result.errors)
            return

        self.console.print(f"> Applied ({plan.source} planner).")
        self.console.print(self.session.summary())
        if result.warnings:
            self._print_list("Warnings", result.warnings)
        else:
            self.console.print()

    def _print_nodes(self) -> None:
        nodes = self.session.nodes
        if not nodes:
            self.console.print("No nodes.")
            return
        table = Table(title=self.session.name)
        table.add_column("#")
        table.add_column("Label")
        table.add_column("Kind")
        table.add_column("Role")
        table.add_column("Id")
        for index, node in enumerate(nodes, start=1):
            table.add_row(str(index), node.label, node.kind, node.role, node.id)
        self.console.print(table)

    def _print_execution(self, result: WorkflowExecutionResult, execution_id: str) -> None:
        table = Table(title=f"Run {execution_id}")
        table.add_column("Step")
        table.add_column("Status")
        table.add_column("ms", justify="right")
        table.add_column("Detail")
        for node_result in result.results:
            detail = node_result.error or json.dumps(node_result.output, ensure_ascii=False, default=str)
            table.add_row(
                node_result.node_label,
                "ok" if node_result.success else "failed",
                f"{node_result.duration * 1000:.1f}",
                detail[:80],
            )
        self.console.print(table)
        status = "succeeded" if result.success else f"failed: {result.error}"
        self.console.print(f"Run {status} in {result.total_duration * 1000:.1f} ms.")
        self.console.print()

    def _print_history(self) -> None:
        records = self.history.list_executions(limit=10)
        self._print_kv_lines(
            "Recent runs",
            [
                (
                    record.execution_id,
                    f"{record.created_at} | {record.workflow_name} | "
                    f"{'ok' if record.success else record.error_text} | {record.node_count} steps",
                )
                for record in records
            ],
        )

    def _print_welcome(self) -> None:
        self._print_kv_lines(
            f"FlowPatch v{__version__}",
            [
                ("Planner", self.settings.planner if self.planner.uses_llm else "rules"),
                ("History", str(self.settings.sqlite_path)),
            ],
        )
        self.console.print("Describe an automation, or type /help.")
        self.console.print()

    def _print_help(self) -> None:
        commands = [
            ("/show", "Show the workflow summary"),
            ("/nodes", "List nodes with ids"),
            ("/validate", "Validate the current graph"),
            ("/run [json]", "Execute the workflow with an optional JSON payload"),
            ("/history", "Show recent runs"),
            ("/export [path]", "Export the graph as JSON"),
            ("/import <path>", "Load a graph from a JSON file"),
            ("/undo", "Undo the last change"),
            ("/redo", "Redo the last undone change"),
            ("/name [name]", "Show or set the workflow name"),
            ("/new", "Start an empty workflow"),
            ("/quit", "Exit"),
        ]
        self.console.print("Commands")
        for command, desc in commands:
            self.console.print(f"- {command}: {desc}")
        self.console.print()
        self.console.print("Editor")
        self.console.print("- Enter sends")
        self.console.print("- Alt+Enter/Ctrl+J inserts newline")
        self.console.print("- Typing / triggers command autocomplete")
        self.console.print()

    def _root_commands(self) -> list[str]:
        return [
            "/show",
            "/nodes",
            "/validate",
            "/run",
            "/history",
            "/export",
            "/import",
            "/undo",
            "/redo",
            "/name",
            "/new",
            "/help",
            "/quit",
        ]

    def _subcommand_options(self, root_command: str) -> list[str]:
        if root_command == "/run":
            return ["{}", '{"text": "hello"}']
        if root_command in {"/export", "/import"}:
            return ["workflow.json"]
        return []

    async def run(self) -> None:
        self._print_welcome()

        with patch_stdout():
            while True:
                try:
                    raw = await self._prompt_session.prompt_async("• ")
                except EOFError:
                    self.console.print("Goodbye.")
                    break
                except KeyboardInterrupt:
                    continue

                user_input = raw.strip()
                if not user_input:
                    continue

                if user_input.startswith("/"):
                    if await self._handle_command(user_input):
                        break
                    continue

                await self._handle_user_message(user_input)


def run() -> None:
    configure_logging()
    app = FlowPatchCLI()
    try:
        asyncio.run(app.run())
    except asyncio.CancelledError:
        app.console.print("Session interruption handled. You can restart safely.")
    except KeyboardInterrupt:
        app.console.print("\nInterrupted. Goodbye.")
