"""Pytest configuration and shared fixtures."""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from process_tester.credential_provider import CredentialProvider
from process_tester.endpoint_resolver import EndpointResolver
from process_tester.execution_engine import ExecutionEngine
from process_tester.payload_policy import PayloadPolicy
from process_tester.process_types import ExecutionMode
from tests.helpers import AUTH_URL, BASE_URL, GOST_BASE_URL, ApiRecorder, FakeClock

SAMPLES_DIR = Path(__file__).resolve().parent.parent / "samples"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_credentials(clock):
    """Factory: (CredentialProvider, list of token requests) backed by a mock token endpoint."""

    def _make(
        token: str = "test-access-token",
        expires_in: Optional[int] = 3600,
        status: int = 200,
        client_id: Optional[str] = "test-client",
        client_secret: Optional[str] = "s3cr3t-value",
        body_format: str = "form",
    ):
        calls: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            payload: Dict[str, Any] = {"access_token": token}
            if expires_in is not None:
                payload["expires_in"] = expires_in
            return httpx.Response(status, json=payload)

        provider = CredentialProvider(
            auth_url=AUTH_URL,
            client_id=client_id,
            client_secret=client_secret,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
            body_format=body_format,
            clock=clock,
        )
        return provider, calls

    return _make


@pytest.fixture
def make_engine(make_credentials):
    """Factory: (ExecutionEngine, ApiRecorder) with mock STANDARD (and optional GOST) transports."""

    def _make(
        api: Optional[ApiRecorder] = None,
        gost_api: Optional[ApiRecorder] = None,
        mappings: Optional[Dict[str, str]] = None,
        overrides: Tuple[Dict[str, Any], ...] = (),
        credentials: Optional[CredentialProvider] = None,
        **kwargs,
    ):
        api = api or ApiRecorder()
        if credentials is None:
            credentials, _ = make_credentials()

        base_urls = {ExecutionMode.STANDARD: BASE_URL}
        clients = {ExecutionMode.STANDARD: httpx.Client(transport=httpx.MockTransport(api))}
        if gost_api is not None:
            base_urls[ExecutionMode.GOST] = GOST_BASE_URL
            clients[ExecutionMode.GOST] = httpx.Client(transport=httpx.MockTransport(gost_api))

        engine = ExecutionEngine(
            credentials=credentials,
            resolver=EndpointResolver(mappings),
            base_urls=base_urls,
            clients=clients,
            payload_policy=PayloadPolicy.from_config(overrides),
            **kwargs,
        )
        return engine, api

    return _make


@pytest.fixture
def sample_text() -> Callable[[str], str]:
    def _read(name: str) -> str:
        return (SAMPLES_DIR / name).read_text(encoding="utf-8")
    return _read
