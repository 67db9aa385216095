from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Sequence

from rich.console import Console
from rich.table import Table

from pipe_runtime.engine import (
    ExecutionContext,
    ExecutionResult,
    IntermediateResult,
    OperatorCatalog,
    PipeDefinition,
    PipeExecutionError,
    PipeExecutor,
    TargetNodeNotFoundError,
    validate_pipe_definition,
    validate_pipe_or_raise,
)
from pipe_runtime.engine.output_limiter import serialize_output
from pipe_runtime.logging_utils import configure_logging
from pipe_runtime.operators import build_default_catalog
from pipe_runtime.orchestration import run_with_timeout
from pipe_runtime.settings import AppSettings, load_settings


EXIT_OK = 0
EXIT_PIPE_ERROR = 1
EXIT_USAGE = 2

PREVIEW_CHARS = 60


class UsageError(ValueError):
    """Bad command line input or an unreadable pipe file."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pipe-runtime", description="Run and inspect pipe definitions.")
    commands = parser.add_subparsers(dest="command", required=True)

    run_parser = commands.add_parser("run", help="Execute a pipe definition.")
    run_parser.add_argument("pipe", help="Path to a pipe definition JSON file.")
    run_parser.add_argument("--node", help="Only run this node and everything upstream of it.")
    run_parser.add_argument(
        "--input",
        action="append",
        default=[],
        metavar="LABEL=VALUE",
        help="User input value keyed by the input operator label (repeatable).",
    )
    run_parser.add_argument("--json", action="store_true", help="Print the full result as JSON.")
    run_parser.add_argument("--timeout", type=float, help="Seconds to wait before giving up.")

    validate_parser = commands.add_parser("validate", help="Check a pipe definition without running it.")
    validate_parser.add_argument("pipe", help="Path to a pipe definition JSON file.")

    upstream_parser = commands.add_parser("upstream", help="List the nodes a node depends on.")
    upstream_parser.add_argument("pipe", help="Path to a pipe definition JSON file.")
    upstream_parser.add_argument("node", help="Target node id.")
    return parser


class PipeRuntimeCLI:
    def __init__(
        self,
        *,
        console: Console | None = None,
        settings: AppSettings | None = None,
        catalog: OperatorCatalog | None = None,
    ) -> None:
        self.console = console or Console(no_color=True, highlight=False, markup=False, emoji=False)
        self.settings = settings or load_settings()
        self.catalog = catalog or build_default_catalog(
            request_timeout_seconds=self.settings.operator_request_timeout_seconds,
            domain_allowlist=self.settings.domain_allowlist,
        )
        self.executor = PipeExecutor(
            self.catalog,
            max_execution_seconds=self.settings.max_execution_seconds,
            max_output_bytes=self.settings.max_output_bytes,
            require_input_connections=self.settings.require_input_connections,
        )

    def dispatch(self, args: argparse.Namespace) -> int:
        try:
            if args.command == "run":
                return self.cmd_run(args)
            if args.command == "validate":
                return self.cmd_validate(args)
            if args.command == "upstream":
                return self.cmd_upstream(args)
        except UsageError as exc:
            self.console.print(f"Error: {exc}")
            return EXIT_USAGE
        self.console.print(f"Error: unknown command '{args.command}'.")
        return EXIT_USAGE

    def cmd_run(self, args: argparse.Namespace) -> int:
        raw = load_pipe_file(args.pipe)
        context = ExecutionContext(user_inputs=parse_inputs(args.input))
        timeout = args.timeout if args.timeout is not None else self.settings.sync_execution_timeout_seconds

        try:
            validate_pipe_or_raise(raw, self.catalog, max_operators=self.settings.max_operators)
            result = asyncio.run(
                run_with_timeout(
                    self.executor,
                    raw,
                    timeout_seconds=timeout,
                    context=context,
                    target_node_id=args.node,
                )
            )
        except PipeExecutionError as exc:
            self._print_failure(exc, as_json=args.json)
            return EXIT_PIPE_ERROR

        if args.json:
            self._print_json(result.to_dict())
        else:
            self._print_trace(result)
            self.console.print("Final result:")
            self.console.print(json.dumps(result.final_result, indent=2, ensure_ascii=False, default=str), soft_wrap=True)
        return EXIT_OK

    def cmd_validate(self, args: argparse.Namespace) -> int:
        raw = load_pipe_file(args.pipe)
        issues = validate_pipe_definition(raw, self.catalog, max_operators=self.settings.max_operators)
        if not issues:
            self.console.print("Pipe is valid.")
            return EXIT_OK

        self.console.print(f"Pipe has {len(issues)} issue(s):")
        for issue in issues:
            where = issue.node_id or issue.edge_id
            suffix = f" [{where}]" if where else ""
            self.console.print(f"- {issue.type}: {issue.message}{suffix}")
        return EXIT_PIPE_ERROR

    def cmd_upstream(self, args: argparse.Namespace) -> int:
        raw = load_pipe_file(args.pipe)
        try:
            definition = PipeDefinition.coerce(raw)
            if args.node not in definition.node_map():
                raise TargetNodeNotFoundError(
                    f"Target node {args.node} not found in pipe definition.",
                    node_id=args.node,
                )
        except PipeExecutionError as exc:
            self._print_failure(exc, as_json=False)
            return EXIT_PIPE_ERROR

        upstream = self.executor.find_upstream_nodes(args.node, definition.edges)
        ordered = [node.id for node in definition.nodes if node.id in upstream]
        self.console.print(f"Upstream of {args.node}:")
        if not ordered:
            self.console.print("- (none)")
        for node_id in ordered:
            self.console.print(f"- {node_id}")
        return EXIT_OK

    def _print_trace(self, result: ExecutionResult | None, items: dict[str, IntermediateResult] | None = None) -> None:
        rows = items if items is not None else (result.intermediate_results if result else {})
        order = result.execution_order if result else list(rows)

        table = Table(title="Execution trace")
        table.add_column("#", justify="right")
        table.add_column("Node")
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("Time (ms)", justify="right")
        table.add_column("Output")

        for position, node_id in enumerate(order, start=1):
            item = rows.get(node_id)
            if item is None:
                continue
            preview = item.error if item.status == "error" else _preview(item.result)
            table.add_row(
                str(position),
                item.label or node_id,
                item.type,
                item.status,
                str(item.execution_time_ms),
                preview or "",
            )

        self.console.print(table)
        if result is not None:
            self.console.print(f"Total time: {result.total_execution_time_ms} ms")

    def _print_failure(self, exc: PipeExecutionError, *, as_json: bool) -> None:
        if as_json:
            self._print_json(exc.to_dict())
            return
        self.console.print(f"Error ({exc.kind}): {exc.message}")
        if exc.diagnostics is not None and exc.diagnostics.intermediate_results:
            self._print_trace(None, exc.diagnostics.intermediate_results)

    def _print_json(self, payload: dict[str, Any]) -> None:
        self.console.print(json.dumps(payload, indent=2, ensure_ascii=False, default=str), soft_wrap=True)


def load_pipe_file(path: str) -> dict[str, Any]:
    try:
        text = Path(path).expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        raise UsageError(f"Cannot read pipe file '{path}': {exc.strerror or exc}") from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise UsageError(f"Pipe file '{path}' is not valid JSON: {exc}") from exc

    # Stored pipes wrap the graph under "definition".
    if isinstance(payload, dict) and isinstance(payload.get("definition"), dict):
        payload = payload["definition"]
    if not isinstance(payload, dict):
        raise UsageError(f"Pipe file '{path}' must contain a JSON object.")
    return payload


def parse_inputs(pairs: Sequence[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs:
        label, sep, value = pair.partition("=")
        if not sep or not label.strip():
            raise UsageError(f"Invalid --input '{pair}'. Use LABEL=VALUE.")
        values[label.strip()] = value
    return values


def _preview(value: object) -> str:
    try:
        text = serialize_output(value)
    except (TypeError, ValueError):
        text = repr(value)
    if len(text) > PREVIEW_CHARS:
        return text[: PREVIEW_CHARS - 3] + "..."
    return text


def main(argv: Sequence[str] | None = None, *, app: PipeRuntimeCLI | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_USAGE

    cli = app or PipeRuntimeCLI()
    return cli.dispatch(args)


def run() -> None:
    configure_logging()
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
