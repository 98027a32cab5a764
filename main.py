#!/usr/bin/env python3
"""
Process API Tester - command-line runner

Parses a BPMN or sequence diagram and executes its steps against the
configured API, printing the execution record as JSON.

Usage:
    # Run a sequence diagram against the standard API
    python main.py --diagram samples/transfer.puml

    # BPMN process in GOST mode with seed context and generated data
    python main.py --diagram samples/account_flow.bpmn --mode gost \
        --context accountId=40817810000000000001 --generate-data

    # Save the execution record
    python main.py --diagram samples/transfer.puml --output reports/execution.json

Exit codes: 0 COMPLETED, 1 FAILED, 2 parse or configuration error.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from process_tester.config import Settings, load_runtime_config
from process_tester.data_generator import SchemaDataGenerator
from process_tester.execution_engine import build_engine
from process_tester.process_parser import parse_process
from process_tester.process_types import (
    ConfigurationError,
    ExecutionMode,
    ExecutionStatus,
    ProcessParseError,
)

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# ==================== Logging ====================

class ColoredFormatter(logging.Formatter):
    """Colored console output"""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(level: str = "INFO", verbose: bool = False):
    """Configure root logging; colors only on an interactive stderr."""
    handler = logging.StreamHandler()
    if sys.stderr.isatty():
        handler.setFormatter(ColoredFormatter(LOG_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )

logger = logging.getLogger("process_tester.cli")

# ==================== Helpers ====================

def parse_context_pairs(pairs: Optional[List[str]]) -> Dict[str, Any]:
    """``KEY=VALUE`` strings to a context dict."""
    context: Dict[str, Any] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValueError(f"Context value must look like KEY=VALUE: {pair!r}")
        key, value = pair.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Context key is empty: {pair!r}")
        context[key] = value
    return context


def _print_step(event: Dict[str, Any]) -> None:
    if event.get("event") == "step_finished":
        icon = "✅" if event.get("status") == "SUCCESS" else "❌"
        logger.info(f"{icon} {event.get('step_id')} {event.get('status')} ({event.get('duration_ms')}ms)")

# ==================== CLI ====================

def _build_cli() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="process-tester",
        description="Execute the API steps of a BPMN or sequence diagram",
    )
    p.add_argument("--diagram", required=True, help="Path to a .bpmn/.xml or sequence diagram file")
    p.add_argument("--name", help="Process name (defaults to the diagram's own name)")
    p.add_argument("--mode", choices=["standard", "gost"], default="standard", help="Target API mode")
    p.add_argument("--context", action="append", metavar="KEY=VALUE", help="Initial context value (repeatable)")
    p.add_argument("--generate-data", action="store_true", help="Generate request data from schemas")
    p.add_argument("--config", help="Runtime JSON configuration file")
    p.add_argument("--output", help="Write the execution JSON to this file")
    p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return p


def run(args: argparse.Namespace, settings: Optional[Settings] = None) -> int:
    settings = settings or Settings()

    try:
        text = Path(args.diagram).read_text(encoding="utf-8")
        context = parse_context_pairs(args.context)
        process = parse_process(text, name=args.name)
        runtime = load_runtime_config(args.config or settings.config_path)
    except (OSError, ValueError, ProcessParseError, ConfigurationError) as e:
        logger.error(f"Cannot start execution: {e}")
        return EXIT_USAGE

    generate = args.generate_data or settings.generate_test_data
    data_source = SchemaDataGenerator() if generate else None
    mode = ExecutionMode(args.mode.upper())

    with build_engine(settings, runtime, data_source=data_source, progress_cb=_print_step) as engine:
        execution = engine.execute(process, mode=mode, initial_context=context, generate_test_data=generate)

    record = json.dumps(execution.to_dict(), indent=2, ensure_ascii=False)
    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(record, encoding="utf-8")
        logger.info(f"Execution record written to {out}")
    else:
        print(record)

    if execution.status == ExecutionStatus.COMPLETED:
        return EXIT_COMPLETED
    logger.warning(execution.error_summary or "Execution failed")
    return EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_cli().parse_args(argv)
    settings = Settings()
    setup_logging(settings.log_level, verbose=args.verbose)
    return run(args, settings)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n👋 Cancelled by user")
        sys.exit(130)
