# process_tester/config.py
"""
Configuration: environment settings plus an optional JSON runtime file.

Settings come from PROCESS_TESTER_* environment variables or a .env file.
The runtime file (endpoint mappings, payload overrides, extra context
fields, auth markers) is validated with JSON Schema before use.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate as jsonschema_validate
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from process_tester.process_types import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_RUNTIME_CONFIG_PATH = "config/process_tester.json"


class Settings(BaseSettings):
    """
    Centralized, env-driven configuration.
    Override via PROCESS_TESTER_* environment variables or a .env file at repo root.
    """
    base_url: str = "http://localhost:8080"
    gost_base_url: str = "https://localhost:8443"

    auth_url: str = ""
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    auth_body_format: str = Field(default="form", pattern="^(form|json)$")
    token_default_ttl_s: int = 3600
    token_refresh_margin_s: int = 60

    request_timeout_s: float = 30.0
    verify_ssl: bool = True

    gost_enabled: bool = False
    gost_cert_path: Optional[str] = None
    gost_key_path: Optional[str] = None
    gost_trust_all_certs: bool = False

    generate_test_data: bool = False
    log_level: str = "INFO"
    config_path: str = DEFAULT_RUNTIME_CONFIG_PATH

    model_config = SettingsConfigDict(
        env_prefix="PROCESS_TESTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


RUNTIME_CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "endpoint_mappings": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
        "payload_overrides": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["pattern", "payload"],
                "properties": {
                    "pattern": {"type": "string", "minLength": 1},
                    "payload": {"type": "object"},
                    "merge_context": {"type": "boolean"},
                },
                "additionalProperties": False,
            },
        },
        "context_fields": {"type": "array", "items": {"type": "string"}},
        "auth_patterns": {"type": "array", "items": {"type": "string"}},
    },
    "additionalProperties": False,
}


@dataclass
class RuntimeConfig:
    """Static tables read once at startup."""
    endpoint_mappings: Dict[str, str] = field(default_factory=dict)
    payload_overrides: List[Dict[str, Any]] = field(default_factory=list)
    context_fields: List[str] = field(default_factory=list)
    auth_patterns: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeConfig":
        try:
            jsonschema_validate(instance=data, schema=RUNTIME_CONFIG_SCHEMA)
        except JSONSchemaValidationError as e:
            raise ConfigurationError(f"Invalid runtime configuration: {e.message}") from e
        return cls(
            endpoint_mappings=dict(data.get("endpoint_mappings") or {}),
            payload_overrides=list(data.get("payload_overrides") or []),
            context_fields=list(data.get("context_fields") or []),
            auth_patterns=list(data.get("auth_patterns") or []),
        )


def load_runtime_config(path: Optional[str] = None) -> RuntimeConfig:
    """Load the JSON runtime file; a missing or unreadable file yields defaults."""
    p = Path(path or DEFAULT_RUNTIME_CONFIG_PATH)
    if not p.exists():
        logger.info(f"No runtime config at {p}, using defaults")
        return RuntimeConfig()

    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Runtime config read error ({p}): {e}")
        return RuntimeConfig()

    config = RuntimeConfig.from_dict(data)
    logger.info(
        f"Loaded runtime config from {p}: {len(config.endpoint_mappings)} mappings, "
        f"{len(config.payload_overrides)} payload overrides"
    )
    return config
