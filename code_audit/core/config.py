"""
Server configuration.

Provides:
- pydantic models for every configuration section
- YAML file loading with partial files merged over defaults
- Environment overrides for the few knobs people change most
"""
import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .types import AUDIT_CATEGORIES, AuditType

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CODE_AUDIT_CONFIG"
PROJECT_CONFIG_FILE = "code-audit.yaml"
GLOBAL_CONFIG_FILE = Path.home() / ".code-audit" / "config.yaml"

SeverityName = Literal["critical", "high", "medium", "low", "info"]


# =============================================================================
# SECTIONS
# =============================================================================

class OllamaSettings(BaseModel):
    """Backend connection knobs. Durations are seconds."""
    host: str = "http://localhost:11434"
    timeout: float = Field(30.0, gt=0)
    retry_attempts: int = Field(3, ge=1, le=10)
    retry_delay: float = Field(1.0, ge=0)
    health_check_interval: float = Field(60.0, ge=0)
    list_timeout: float = Field(5.0, gt=0)
    pull_timeout: float = Field(1800.0, gt=0)

    @field_validator("host")
    @classmethod
    def host_has_scheme(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"host must start with http:// or https://, got {v!r}")
        return v.rstrip("/")


class AuditorSettings(BaseModel):
    enabled: bool = True
    severity: List[SeverityName] = Field(default_factory=list)
    rules: Dict[str, bool] = Field(default_factory=dict)
    thresholds: Dict[str, float] = Field(default_factory=dict)
    custom_prompts: List[str] = Field(default_factory=list)

    def merged(self, updates: Dict[str, Any]) -> "AuditorSettings":
        data = self.model_dump()
        for key, value in updates.items():
            if key in ("rules", "thresholds") and isinstance(value, dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return AuditorSettings.model_validate(data)


def _default_auditors() -> Dict[str, AuditorSettings]:
    high_impact = ["critical", "high", "medium"]
    maintainability = ["high", "medium", "low"]
    return {
        AuditType.SECURITY.value: AuditorSettings(severity=high_impact),
        AuditType.COMPLETENESS.value: AuditorSettings(severity=high_impact),
        AuditType.PERFORMANCE.value: AuditorSettings(severity=high_impact),
        AuditType.QUALITY.value: AuditorSettings(severity=maintainability),
        AuditType.ARCHITECTURE.value: AuditorSettings(severity=maintainability),
        AuditType.TESTING.value: AuditorSettings(severity=maintainability),
        AuditType.DOCUMENTATION.value: AuditorSettings(severity=["medium", "low", "info"]),
    }


class ModelSettings(BaseModel):
    selection_strategy: Literal["default", "performance", "quality", "metrics"] = "default"
    overrides: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class LoggingSettings(BaseModel):
    level: Literal["debug", "info", "warning", "error"] = "info"
    enable_metrics: bool = True
    enable_tracing: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.lower()
            return "warning" if v == "warn" else v
        return v


class PerformanceSettings(BaseModel):
    max_concurrent_audits: int = Field(3, ge=1, le=16)
    request_timeout: float = Field(300.0, gt=0)


class TransportSettings(BaseModel):
    transport: Literal["stdio", "http"] = "stdio"
    host: str = "127.0.0.1"
    port: int = Field(3000, ge=1, le=65535)


class ServerConfig(BaseModel):
    name: str = "code-audit-mcp"
    version: str = "1.0.0"
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    auditors: Dict[str, AuditorSettings] = Field(default_factory=_default_auditors)
    models: ModelSettings = Field(default_factory=ModelSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    server: TransportSettings = Field(default_factory=TransportSettings)

    @field_validator("auditors")
    @classmethod
    def known_audit_types(cls, v: Dict[str, AuditorSettings]) -> Dict[str, AuditorSettings]:
        known = {t.value for t in AUDIT_CATEGORIES}
        unknown = sorted(set(v) - known)
        if unknown:
            raise ValueError(f"unknown audit types: {', '.join(unknown)}")
        return v

    def auditor_settings(self, audit_type: AuditType) -> Optional[AuditorSettings]:
        return self.auditors.get(audit_type.value)


# =============================================================================
# LOADING
# =============================================================================

def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_config_path(path: Optional[Union[str, Path]]) -> Optional[Path]:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    for candidate in (Path.cwd() / PROJECT_CONFIG_FILE, GLOBAL_CONFIG_FILE):
        if candidate.exists():
            return candidate
    return None


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if os.environ.get("OLLAMA_HOST"):
        overrides.setdefault("ollama", {})["host"] = os.environ["OLLAMA_HOST"]
    if os.environ.get("CODE_AUDIT_LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = os.environ["CODE_AUDIT_LOG_LEVEL"]
    if os.environ.get("CODE_AUDIT_MAX_CONCURRENT"):
        overrides.setdefault("performance", {})["max_concurrent_audits"] = os.environ[
            "CODE_AUDIT_MAX_CONCURRENT"
        ]
    return overrides


def build_config(data: Optional[Dict[str, Any]] = None) -> ServerConfig:
    """Validate a (possibly partial) config mapping over the defaults."""
    merged = _deep_merge(ServerConfig().model_dump(), data or {})
    try:
        return ServerConfig.model_validate(merged)
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ConfigError("Invalid configuration", details=messages) from e


def load_config(path: Optional[Union[str, Path]] = None) -> ServerConfig:
    """Load configuration from YAML, then apply environment overrides."""
    config_path = _resolve_config_path(path)
    data: Dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        with open(config_path) as fp:
            try:
                data = yaml.safe_load(fp) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Malformed YAML in {config_path}", details=str(e)) from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
        logger.info(f"Loaded configuration from {config_path}")

    return build_config(_deep_merge(data, _env_overrides()))


def dump_config(config: ServerConfig, path: Union[str, Path]) -> Path:
    """Write the configuration as YAML, creating parent directories."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as fp:
        yaml.safe_dump(config.model_dump(), fp, sort_keys=False)
    return target


__all__ = [
    "AuditorSettings",
    "LoggingSettings",
    "ModelSettings",
    "OllamaSettings",
    "PerformanceSettings",
    "ServerConfig",
    "TransportSettings",
    "build_config",
    "dump_config",
    "load_config",
]
