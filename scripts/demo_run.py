#!/usr/bin/env python3
"""
Demo Runner (offline, mock bank API)

Runs the bundled sample diagrams against an in-process fake bank served
through httpx.MockTransport, so no network or credentials are needed.

✅ BPMN and sequence-diagram samples
✅ Synthetic auth step with a cached token
✅ accountId propagation between steps
✅ Endpoint mapping and payload override from samples/process_tester.json
✅ Optional schema-driven test data (--generate-data)
✅ Exit code 0 when every sample completes

Usage:
    python -m scripts.demo_run
    python -m scripts.demo_run --sample transfer.puml --verbose
"""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

import httpx

from main import setup_logging
from process_tester.config import load_runtime_config
from process_tester.credential_provider import CredentialProvider
from process_tester.data_generator import SchemaDataGenerator
from process_tester.endpoint_resolver import EndpointResolver
from process_tester.execution_engine import ExecutionEngine
from process_tester.payload_policy import PayloadPolicy
from process_tester.process_parser import parse_process
from process_tester.process_types import ExecutionMode, ExecutionStatus

SAMPLES_DIR = Path(__file__).resolve().parent.parent / "samples"
DEFAULT_SAMPLES = ["account_flow.bpmn", "transfer.puml"]

logger = logging.getLogger("demo_run")

# ==================== Fake bank ====================

class FakeBank:
    """Tiny stateful bank API behind a MockTransport."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.accounts: Dict[str, Dict[str, Any]] = {}

    def token(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "demo-" + "x" * 60, "expires_in": 1800})

    def api(self, request: httpx.Request) -> httpx.Response:
        parts = [p for p in request.url.path.split("/") if p]
        if parts[:2] == ["api", "v2"]:
            parts = parts[2:]

        if request.method == "POST" and parts == ["accounts"]:
            account_id = f"408178100000000000{next(self._ids):02d}"
            self.accounts[account_id] = {"accountId": account_id, "balance": 1000.0, "currency": "RUB"}
            return httpx.Response(201, json={"accountId": account_id, "status": "OPEN"})

        if len(parts) >= 2 and parts[0] == "accounts":
            account = self.accounts.get(parts[1])
            if account is None:
                # unknown ids still answer, as a sandbox would
                account = {"accountId": parts[1], "balance": 0.0, "currency": "RUB"}
            if request.method == "GET" and parts[2:] == ["balances"]:
                return httpx.Response(200, json={"amount": account["balance"], "currency": account["currency"]})
            if request.method == "GET":
                return httpx.Response(200, json=account)
            if request.method == "DELETE":
                self.accounts.pop(parts[1], None)
                return httpx.Response(204)

        if request.method == "POST" and parts[:2] == ["payments", "transfers"]:
            return httpx.Response(201, json={"transactionId": f"TXN{next(self._ids):06d}", "status": "ACCEPTED"})

        return httpx.Response(404, json={"error": f"no route for {request.method} {request.url.path}"})


def build_demo_engine(generate_data: bool = False) -> ExecutionEngine:
    bank = FakeBank()
    runtime = load_runtime_config(str(SAMPLES_DIR / "process_tester.json"))
    credentials = CredentialProvider(
        auth_url="https://bank.demo/auth/token",
        client_id="demo-client",
        client_secret="demo-secret",
        client=httpx.Client(transport=httpx.MockTransport(bank.token)),
    )
    client = httpx.Client(transport=httpx.MockTransport(bank.api))
    return ExecutionEngine(
        credentials=credentials,
        resolver=EndpointResolver(runtime.endpoint_mappings),
        base_urls={ExecutionMode.STANDARD: "https://bank.demo"},
        clients={ExecutionMode.STANDARD: client},
        data_source=SchemaDataGenerator(seed=2024) if generate_data else None,
        payload_policy=PayloadPolicy.from_config(runtime.payload_overrides),
        context_fields=runtime.context_fields,
        auth_patterns=runtime.auth_patterns,
    )


def demo(samples: List[str], generate_data: bool = False) -> bool:
    all_passed = True
    with build_demo_engine(generate_data) as engine:
        for sample in samples:
            process = parse_process((SAMPLES_DIR / sample).read_text(encoding="utf-8"))
            logger.info(f"▶ {sample}: '{process.name}' ({len(process.steps)} steps)")

            execution = engine.execute(process, generate_test_data=generate_data)
            for r in execution.step_results:
                icon = "✅" if r.succeeded else "❌"
                logger.info(f"  {icon} [{r.order}] {r.step.name} -> {r.status.value} ({r.http_status})")

            if execution.status == ExecutionStatus.COMPLETED:
                logger.info(f"✅ {sample} completed")
            else:
                all_passed = False
                logger.warning(f"❌ {sample} failed\n{execution.error_summary}")
                print(json.dumps(execution.to_dict(), indent=2, ensure_ascii=False))
    return all_passed


def _build_cli():
    p = argparse.ArgumentParser(prog="demo_run", description="Run sample diagrams against a mock bank API")
    p.add_argument("--sample", action="append", help="Sample file under samples/ (repeatable)")
    p.add_argument("--generate-data", action="store_true", help="Generate request data from schemas")
    p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return p


if __name__ == "__main__":
    args = _build_cli().parse_args()
    setup_logging(verbose=args.verbose)
    sys.exit(0 if demo(args.sample or DEFAULT_SAMPLES, args.generate_data) else 1)
