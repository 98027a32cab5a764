# process_tester/execution_engine.py
"""
Execution Engine

Drives the steps of a ProcessDefinition over HTTP, strictly in order.

✅ RUNNING -> COMPLETED (every step succeeded) or FAILED (first non-success halts)
✅ Synthetic authentication steps (token only, no HTTP call recorded)
✅ Endpoint remapping via EndpointResolver
✅ Payload composition: generated data, accumulated context, per-endpoint overrides
✅ Deterministic fillers for unbound path placeholders
✅ Response validation against the step's response schema
✅ Identifier propagation into the execution context
✅ STANDARD / GOST modes with separate base URLs and clients
✅ Progress callbacks
✅ Secret redaction in recorded snapshots
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import ssl
import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote

import httpx

from process_tester.config import RuntimeConfig, Settings
from process_tester.credential_provider import CredentialProvider
from process_tester.data_generator import PayloadDataSource
from process_tester.endpoint_descriptor import EndpointDescriptor
from process_tester.endpoint_resolver import PLACEHOLDER_RE, EndpointResolver
from process_tester.execution_context import DEFAULT_ID_FIELDS, ExecutionContext
from process_tester.payload_policy import PayloadPolicy
from process_tester.process_types import (
    CredentialError,
    Execution,
    ExecutionMode,
    ExecutionStatus,
    ProcessDefinition,
    Step,
    StepResult,
    StepStatus,
)
from process_tester.response_validator import validate_response

logger = logging.getLogger(__name__)

# ==================== Constants ====================

AUTH_ENDPOINT_MARKERS = ("/auth/bank-token", "/auth/token", "/oauth/token")
AUTH_NAME_MARKERS = ("authentication", "аутентификация")
_AUTH_WORD_RE = re.compile(r"\bauth\b")

_SENSITIVE_KEYS = {
    "authorization", "x-api-key", "api_key", "apikey", "token",
    "access_token", "refresh_token", "client_secret", "password", "secret",
    "cookie", "x-auth-token", "x-access-token", "bearer", "session", "jwt"
}

TOKEN_PREVIEW_CHARS = 50
NON_API_NOTE = "No API call for this step"


# ==================== Helpers ====================

def redact_sensitive(data: Any) -> Any:
    """Recursively redact sensitive information"""
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in _SENSITIVE_KEYS else redact_sensitive(v)
            for k, v in data.items()
        }
    elif isinstance(data, list):
        return [redact_sensitive(item) for item in data]
    return data


def synthesize_filler(name: str) -> str:
    """Deterministic stand-in value for an unbound path placeholder."""
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"{name}-{digest}"


def is_auth_step(step: Step, extra_patterns: Iterable[str] = ()) -> bool:
    """True when the step's endpoint or name marks it as token acquisition."""
    endpoint = (step.endpoint or "").lower()
    name = (step.name or "").lower()

    if any(marker in endpoint for marker in AUTH_ENDPOINT_MARKERS):
        return True
    if any(marker in name for marker in AUTH_NAME_MARKERS):
        return True
    if _AUTH_WORD_RE.search(name):
        return True

    for pattern in extra_patterns:
        p = pattern.lower()
        if p and (p in endpoint or p in name):
            return True
    return False


def join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def fill_path(path: str, payload: Mapping[str, Any], context: ExecutionContext) -> Tuple[str, Dict[str, str]]:
    """
    Substitute ``{key}`` placeholders from the payload, then the context.
    Anything still unbound gets a synthesized filler.

    Returns the filled path and the fillers that were invented.
    """
    fillers: Dict[str, str] = {}

    def replace(match: re.Match) -> str:
        key = match.group(1)
        value = payload.get(key)
        if value is None or value == "":
            value = context.get(key)
        if value is None or value == "":
            value = fillers.setdefault(key, synthesize_filler(key))
        return quote(str(value), safe="")

    return PLACEHOLDER_RE.sub(replace, path), fillers


def summarize_failures(results: Iterable[StepResult]) -> str:
    """Human-readable summary of every non-success step."""
    lines = ["Execution failed with the following errors:", ""]
    for r in results:
        lines.append(f"Step: {r.step.name}")
        lines.append(f"Status: {r.status.value}")
        if r.error_message:
            lines.append(f"Error: {r.error_message}")
        if r.validation_errors:
            lines.append(f"Validation errors: {'; '.join(r.validation_errors)}")
        lines.append("")
    return "\n".join(lines).rstrip()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# ==================== Engine ====================

class ExecutionEngine:
    """
    Stop-on-failure executor for parsed processes.

    The credential provider and resolver are shared and may serve several
    concurrent executions; each execute() call owns its own context and
    result list.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        resolver: EndpointResolver,
        base_urls: Mapping[ExecutionMode, str],
        clients: Mapping[ExecutionMode, httpx.Client],
        data_source: Optional[PayloadDataSource] = None,
        payload_policy: Optional[PayloadPolicy] = None,
        context_fields: Iterable[str] = (),
        auth_patterns: Iterable[str] = (),
        timeout_s: float = 30.0,
        progress_cb: Optional[Callable[[Dict[str, Any]], None]] = None,
    ):
        if ExecutionMode.STANDARD not in base_urls or ExecutionMode.STANDARD not in clients:
            raise ValueError("A STANDARD base URL and client are required")

        self.credentials = credentials
        self.resolver = resolver
        self.base_urls = dict(base_urls)
        self.clients = dict(clients)
        self.data_source = data_source
        self.payload_policy = payload_policy or PayloadPolicy()
        self.id_fields = tuple(DEFAULT_ID_FIELDS) + tuple(f for f in context_fields if f not in DEFAULT_ID_FIELDS)
        self.auth_patterns = tuple(auth_patterns)
        self.timeout_s = timeout_s
        self._progress_cb = progress_cb

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        runtime: Optional[RuntimeConfig] = None,
        data_source: Optional[PayloadDataSource] = None,
        progress_cb: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> "ExecutionEngine":
        """Wire an engine from settings and the runtime configuration file."""
        runtime = runtime or RuntimeConfig()
        timeout = httpx.Timeout(settings.request_timeout_s)

        standard = httpx.Client(timeout=timeout, verify=settings.verify_ssl)
        if settings.gost_enabled:
            gost = httpx.Client(timeout=timeout, verify=_gost_ssl_context(settings))
            logger.info(f"GOST mode enabled: {settings.gost_base_url}")
        else:
            gost = standard
            logger.warning("GOST mode disabled, GOST executions will use the standard HTTP client")

        credentials = CredentialProvider(
            auth_url=settings.auth_url,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            client=standard,
            body_format=settings.auth_body_format,
            default_ttl_s=settings.token_default_ttl_s,
            refresh_margin_s=settings.token_refresh_margin_s,
        )

        return cls(
            credentials=credentials,
            resolver=EndpointResolver(runtime.endpoint_mappings),
            base_urls={
                ExecutionMode.STANDARD: settings.base_url,
                ExecutionMode.GOST: settings.gost_base_url,
            },
            clients={ExecutionMode.STANDARD: standard, ExecutionMode.GOST: gost},
            data_source=data_source,
            payload_policy=PayloadPolicy.from_config(runtime.payload_overrides),
            context_fields=runtime.context_fields,
            auth_patterns=runtime.auth_patterns,
            timeout_s=settings.request_timeout_s,
            progress_cb=progress_cb,
        )

    # ==================== Public API ====================

    def execute(
        self,
        process: ProcessDefinition,
        mode: ExecutionMode = ExecutionMode.STANDARD,
        initial_context: Union[ExecutionContext, Mapping[str, Any], None] = None,
        generate_test_data: bool = False,
    ) -> Execution:
        """
        Run every step in order, halting at the first non-success.

        Always returns a finalized Execution (COMPLETED or FAILED).
        """
        if isinstance(initial_context, ExecutionContext):
            context = initial_context
        else:
            context = ExecutionContext(initial_context)

        execution = Execution(process=process, mode=mode)
        logger.info(f"Starting execution of '{process.name}' ({len(process.steps)} steps, mode={mode.value})")
        self._emit("execution_started", process=process.name, mode=mode.value, total_steps=len(process.steps))

        try:
            for step in sorted(process.steps, key=lambda s: s.order):
                self._emit("step_started", step_id=step.step_id, name=step.name, order=step.order)
                result = self._execute_step(step, context, mode, generate_test_data)
                execution.record(result)
                self._emit(
                    "step_finished",
                    step_id=step.step_id,
                    status=result.status.value,
                    http_status=result.http_status,
                    duration_ms=result.duration_ms,
                )
                if not result.succeeded:
                    logger.warning(f"Step '{step.name}' ended with {result.status.value}, halting execution")
                    break
        except Exception as e:
            logger.error(f"Execution of '{process.name}' failed: {e}", exc_info=True)
            execution.finish(ExecutionStatus.FAILED, f"Execution failed: {e}")
            self._emit("execution_finished", status=execution.status.value, steps=len(execution.step_results))
            return execution

        failed = execution.failed_results
        if failed:
            execution.finish(ExecutionStatus.FAILED, summarize_failures(failed))
        else:
            execution.finish(ExecutionStatus.COMPLETED)

        logger.info(
            f"Execution of '{process.name}' finished: {execution.status.value} "
            f"({len(execution.step_results)}/{len(process.steps)} steps recorded)"
        )
        self._emit("execution_finished", status=execution.status.value, steps=len(execution.step_results))
        return execution

    def is_auth_step(self, step: Step) -> bool:
        return is_auth_step(step, self.auth_patterns)

    def close(self) -> None:
        for client in {id(c): c for c in self.clients.values()}.values():
            client.close()
        self.credentials.close()

    def __enter__(self) -> "ExecutionEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ==================== Step handling ====================

    def _execute_step(
        self,
        step: Step,
        context: ExecutionContext,
        mode: ExecutionMode,
        generate_test_data: bool,
    ) -> StepResult:
        started = time.perf_counter()
        try:
            if self.is_auth_step(step):
                return self._authenticate(step, context, started)
            if step.endpoint and step.method is None:
                logger.error(f"Step '{step.name}' has endpoint {step.endpoint} but no usable HTTP method")
                return StepResult(
                    step=step,
                    order=step.order,
                    status=StepStatus.FAILED,
                    error_message=f"Missing or unsupported HTTP method for {step.endpoint}",
                    duration_ms=_elapsed_ms(started),
                )
            if not step.is_api_call:
                logger.info(f"Step '{step.name}' has no API call, recording as success")
                return StepResult(
                    step=step,
                    order=step.order,
                    status=StepStatus.SUCCESS,
                    response_payload=json.dumps({"note": NON_API_NOTE}),
                    duration_ms=_elapsed_ms(started),
                )
            return self._call_api(step, context, mode, generate_test_data, started)
        except CredentialError as e:
            logger.error(f"Step '{step.name}' failed to obtain credentials: {e}")
            return StepResult(
                step=step,
                order=step.order,
                status=StepStatus.FAILED,
                error_message=str(e),
                duration_ms=_elapsed_ms(started),
            )

    def _authenticate(self, step: Step, context: ExecutionContext, started: float) -> StepResult:
        token = self.credentials.get_token()
        context.set("access_token", token)

        request_summary = {
            "grant_type": "client_credentials",
            "client_id": self.credentials.client_id,
            "client_secret": "[REDACTED]",
        }
        response_summary = {
            "access_token": token[:TOKEN_PREVIEW_CHARS] + "...",
            "token_type": "Bearer",
            "expires_in": self.credentials.seconds_until_expiry(),
        }
        logger.info(f"Authentication step '{step.name}' obtained a token")
        return StepResult(
            step=step,
            order=step.order,
            status=StepStatus.SUCCESS,
            request_payload=json.dumps(request_summary),
            response_payload=json.dumps(response_summary),
            http_status=200,
            duration_ms=_elapsed_ms(started),
        )

    def _call_api(
        self,
        step: Step,
        context: ExecutionContext,
        mode: ExecutionMode,
        generate_test_data: bool,
        started: float,
    ) -> StepResult:
        descriptor = EndpointDescriptor.for_step(step)

        resolved = self.resolver.resolve(step.endpoint)
        if resolved != step.endpoint:
            logger.info(f"Endpoint mapped: {step.endpoint} -> {resolved}")

        generated = self._generate(descriptor, context) if generate_test_data else None
        payload = self.payload_policy.compose(step.endpoint, resolved, generated, context.fields())

        path, fillers = fill_path(resolved, payload, context)
        for key, value in fillers.items():
            logger.warning(f"No value for path variable '{key}', using filler '{value}'")
            payload[key] = value
            context.set(key, value)

        url = join_url(self._base_url(mode), path)
        method = step.method
        headers = self.credentials.auth_headers()
        body = json.dumps(payload, default=str) if method.has_body else None
        snapshot = json.dumps(redact_sensitive(payload), default=str)

        logger.info(f"Step {step.order} '{step.name}': {method.value} {url}")
        try:
            resp = self._client(mode).request(
                method.value,
                url,
                headers=headers,
                content=body,
                timeout=self.timeout_s,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            logger.error(f"Step '{step.name}' failed with HTTP {code}")
            return StepResult(
                step=step,
                order=step.order,
                status=StepStatus.FAILED,
                request_payload=snapshot,
                response_payload=e.response.text,
                http_status=code,
                error_message=f"HTTP {code}: {e.response.reason_phrase or 'error'}",
                duration_ms=_elapsed_ms(started),
            )
        except httpx.TimeoutException as e:
            logger.error(f"Step '{step.name}' timed out: {e}")
            return StepResult(
                step=step,
                order=step.order,
                status=StepStatus.FAILED,
                request_payload=snapshot,
                error_message=f"Request timed out after {self.timeout_s}s: {e}",
                duration_ms=_elapsed_ms(started),
            )
        except httpx.HTTPError as e:
            logger.error(f"Step '{step.name}' request failed: {e}")
            return StepResult(
                step=step,
                order=step.order,
                status=StepStatus.FAILED,
                request_payload=snapshot,
                error_message=f"Request failed: {e}",
                duration_ms=_elapsed_ms(started),
            )

        errors = validate_response(resp, descriptor)
        status = StepStatus.VALIDATION_ERROR if errors else StepStatus.SUCCESS
        if status == StepStatus.SUCCESS:
            self._absorb(step, resp, context)

        return StepResult(
            step=step,
            order=step.order,
            status=status,
            request_payload=snapshot,
            response_payload=resp.text,
            http_status=resp.status_code,
            error_message="Response validation failed" if errors else None,
            validation_errors=tuple(errors),
            duration_ms=_elapsed_ms(started),
        )

    # ==================== Internals ====================

    def _generate(self, descriptor: EndpointDescriptor, context: ExecutionContext) -> Optional[Dict[str, Any]]:
        if self.data_source is None:
            return None
        try:
            return self.data_source.generate(descriptor, context.fields())
        except Exception as e:
            logger.warning(f"Test data generation failed for {descriptor.path}: {e}")
            return None

    def _absorb(self, step: Step, resp: httpx.Response, context: ExecutionContext) -> None:
        if not resp.text.strip():
            return
        try:
            data = resp.json()
        except ValueError:
            logger.debug(f"Response of step {step.step_id} is not JSON, nothing to extract")
            return
        if not isinstance(data, dict):
            return
        propagated = context.absorb_response(step.step_id, data, self.id_fields)
        if propagated:
            logger.info(f"Propagated {propagated} from step {step.step_id}")

    def _base_url(self, mode: ExecutionMode) -> str:
        return self.base_urls.get(mode) or self.base_urls[ExecutionMode.STANDARD]

    def _client(self, mode: ExecutionMode) -> httpx.Client:
        return self.clients.get(mode) or self.clients[ExecutionMode.STANDARD]

    def _emit(self, event: str, **data):
        """Emit progress event"""
        if self._progress_cb:
            try:
                self._progress_cb({"event": event, **data})
            except Exception:
                logger.debug("progress_cb failed", exc_info=True)


def _gost_ssl_context(settings: Settings) -> ssl.SSLContext:
    """TLS context for the GOST gateway: optional client certificate, optional trust-all."""
    ctx = ssl.create_default_context()
    if settings.gost_trust_all_certs:
        logger.warning("GOST client trusts all server certificates")
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    elif not settings.verify_ssl:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    if settings.gost_cert_path:
        ctx.load_cert_chain(settings.gost_cert_path, settings.gost_key_path)
    return ctx


def build_engine(
    settings: Settings,
    runtime: Optional[RuntimeConfig] = None,
    data_source: Optional[PayloadDataSource] = None,
    progress_cb: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> ExecutionEngine:
    """Compose an engine from configuration. Alias for ExecutionEngine.from_settings."""
    return ExecutionEngine.from_settings(settings, runtime, data_source, progress_cb)
