"""Unit tests for settings, runtime configuration loading and engine wiring."""

import json
import logging

import pydantic
import pytest

from process_tester.config import RuntimeConfig, Settings, load_runtime_config
from process_tester.execution_engine import ExecutionEngine, build_engine
from process_tester.process_parser import parse_sequence_diagram
from process_tester.process_types import ConfigurationError, ExecutionMode
from tests.helpers import ApiRecorder

SAMPLE_CONFIG = {
    "endpoint_mappings": {"/accounts/{accountId}": "/api/v2/accounts/{accountId}"},
    "payload_overrides": [{"pattern": "/consents", "payload": {"scope": "accounts"}, "merge_context": False}],
    "context_fields": ["consentId"],
    "auth_patterns": ["/sso/login"],
}


@pytest.fixture
def clean_env(monkeypatch):
    for key in ("BASE_URL", "AUTH_URL", "CLIENT_ID", "CLIENT_SECRET", "GOST_ENABLED", "AUTH_BODY_FORMAT"):
        monkeypatch.delenv(f"PROCESS_TESTER_{key}", raising=False)
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.auth_body_format == "form"
        assert settings.token_refresh_margin_s == 60
        assert settings.token_default_ttl_s == 3600
        assert settings.gost_enabled is False
        assert settings.config_path == "config/process_tester.json"

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("PROCESS_TESTER_BASE_URL", "https://bank.example")
        clean_env.setenv("PROCESS_TESTER_CLIENT_ID", "team-42")
        clean_env.setenv("PROCESS_TESTER_GOST_ENABLED", "true")

        settings = Settings(_env_file=None)

        assert settings.base_url == "https://bank.example"
        assert settings.client_id == "team-42"
        assert settings.gost_enabled is True

    def test_invalid_body_format(self, clean_env):
        clean_env.setenv("PROCESS_TESTER_AUTH_BODY_FORMAT", "xml")

        with pytest.raises(pydantic.ValidationError):
            Settings(_env_file=None)


class TestRuntimeConfig:
    """JSON runtime file: schema validation and fallbacks."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_runtime_config(str(tmp_path / "absent.json"))

        assert config == RuntimeConfig()

    def test_valid_file(self, tmp_path):
        path = tmp_path / "runtime.json"
        path.write_text(json.dumps(SAMPLE_CONFIG), encoding="utf-8")

        config = load_runtime_config(str(path))

        assert config.endpoint_mappings == SAMPLE_CONFIG["endpoint_mappings"]
        assert config.payload_overrides[0]["pattern"] == "/consents"
        assert config.context_fields == ["consentId"]
        assert config.auth_patterns == ["/sso/login"]

    def test_schema_violation_raises(self, tmp_path):
        path = tmp_path / "runtime.json"
        path.write_text(json.dumps({"endpoint_mappings": {"/a": 1}}), encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid runtime configuration"):
            load_runtime_config(str(path))

    def test_unknown_key_raises(self):
        with pytest.raises(ConfigurationError):
            RuntimeConfig.from_dict({"endpoint_map": {}})

    def test_override_without_payload_raises(self):
        with pytest.raises(ConfigurationError):
            RuntimeConfig.from_dict({"payload_overrides": [{"pattern": "/x"}]})

    def test_unreadable_file_warns_and_gives_defaults(self, tmp_path, caplog):
        path = tmp_path / "runtime.json"
        path.write_text("{ not json", encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="process_tester.config"):
            config = load_runtime_config(str(path))

        assert config == RuntimeConfig()
        assert "Runtime config read error" in caplog.text

    def test_shipped_sample_is_valid(self, sample_text):
        config = RuntimeConfig.from_dict(json.loads(sample_text("process_tester.json")))

        assert config.endpoint_mappings


class TestEngineWiring:
    """ExecutionEngine.from_settings / build_engine."""

    def test_gost_disabled_reuses_standard_client(self, clean_env):
        settings = Settings(_env_file=None, base_url="https://std.test", gost_base_url="https://gost.test")

        with build_engine(settings, RuntimeConfig.from_dict(SAMPLE_CONFIG)) as engine:
            assert isinstance(engine, ExecutionEngine)
            assert engine.clients[ExecutionMode.GOST] is engine.clients[ExecutionMode.STANDARD]
            assert engine.base_urls[ExecutionMode.GOST] == "https://gost.test"
            assert engine.resolver.resolve("/accounts/5") == "/api/v2/accounts/5"
            assert len(engine.payload_policy) == 1
            assert "consentId" in engine.id_fields
            assert engine.auth_patterns == ("/sso/login",)

    def test_gost_enabled_gets_its_own_client(self, clean_env):
        settings = Settings(_env_file=None, gost_enabled=True, gost_trust_all_certs=True)

        with ExecutionEngine.from_settings(settings) as engine:
            assert engine.clients[ExecutionMode.GOST] is not engine.clients[ExecutionMode.STANDARD]

    def test_credentials_follow_settings(self, clean_env):
        settings = Settings(
            _env_file=None,
            auth_url="https://auth.test/token",
            client_id="cid",
            client_secret="secret",
            auth_body_format="json",
            token_refresh_margin_s=30,
        )

        with build_engine(settings) as engine:
            assert engine.credentials.auth_url == "https://auth.test/token"
            assert engine.credentials.client_id == "cid"
            assert engine.credentials.body_format == "json"
            assert engine.credentials.refresh_margin_s == 30

    def test_config_driven_run(self, clean_env, make_engine):
        config = RuntimeConfig.from_dict(SAMPLE_CONFIG)
        api = ApiRecorder()
        engine, _ = make_engine(
            api=api,
            mappings=config.endpoint_mappings,
            overrides=tuple(config.payload_overrides),
            auth_patterns=config.auth_patterns,
        )

        process = parse_sequence_diagram(
            "A -> B: POST /sso/login\nA -> B: POST /consents\nA -> B: GET /accounts/{accountId}"
        )
        engine.execute(process, initial_context={"accountId": "9"})

        assert api.paths == ["/consents", "/api/v2/accounts/9"]
        assert api.body(0) == {"scope": "accounts"}
