"""
Configuration loader for the ELENA legal assistant.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class RecordsApiConfig:
    base_url: str = "https://apiprod.qpalliance.co/api"
    api_key: str = ""
    api_key_header: str = "x-api-key"
    timeout_seconds: float = 10.0
    max_attempts: int = 3
    endpoints: dict[str, str] = field(default_factory=lambda: {
        "by_client": "/records/by-client",
        "by_internal_code": "/records/by-internal-code",
        "detailed_by_client": "/records/detailed-by-client",
    })


@dataclass
class ChannelConfig:
    enabled: bool = False
    credentials: dict[str, Any] = field(default_factory=dict)


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./elena_sessions.db"        # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory" | "file"
    store_file_dir: str = "./data"                     # directory for file backend
    pool_size: int = 5                                 # ignored for SQLite
    pool_recycle_seconds: int = 1800


@dataclass
class SessionConfig:
    ttl_minutes: int = 30               # idle sessions older than this restart at Idle
    max_processed_events: int = 50      # remembered event ids per user for dedup
    max_auto_hops: int = 5              # chained automatic steps per event


@dataclass
class ReportsConfig:
    output_dir: str = "./public/reports"
    public_base_url: str = "http://localhost:8000"
    dispose_after_seconds: float = 120.0
    max_age_minutes: int = 60


@dataclass
class RendererConfig:
    type: str = "text"                  # "text" (built-in) | "http"
    url: str = ""
    timeout_seconds: float = 30.0


@dataclass
class LawyerConfig:
    new_process_number: str = ""        # receives new-process requests
    existing_process_number: str = ""   # receives questions about existing cases
    timezone: str = "America/Bogota"


@dataclass
class Settings:
    app_name: str = "ELENA - QPAlliance"
    debug: bool = False
    timezone: str = "America/Bogota"
    records_api: RecordsApiConfig = field(default_factory=RecordsApiConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    reports: ReportsConfig = field(default_factory=ReportsConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    lawyers: LawyerConfig = field(default_factory=LawyerConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _unresolved(value: Any) -> Any:
    """Treat a ${VAR} left unsubstituted as an empty value."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return ""
    return value


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "ELENA_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.timezone = raw.get("timezone", settings.timezone)

        if "records_api" in raw:
            api = raw["records_api"]
            defaults = RecordsApiConfig()
            settings.records_api = RecordsApiConfig(
                base_url=_unresolved(api.get("base_url", "")) or defaults.base_url,
                api_key=_unresolved(api.get("api_key", "")),
                api_key_header=api.get("api_key_header", defaults.api_key_header),
                timeout_seconds=float(api.get("timeout_seconds", defaults.timeout_seconds)),
                max_attempts=int(api.get("max_attempts", defaults.max_attempts)),
                endpoints={**defaults.endpoints, **api.get("endpoints", {})},
            )

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                store_backend=db.get("store_backend", settings.database.store_backend),
                store_file_dir=db.get("store_file_dir", settings.database.store_file_dir),
                pool_size=int(db.get("pool_size", settings.database.pool_size)),
                pool_recycle_seconds=int(db.get("pool_recycle_seconds", settings.database.pool_recycle_seconds)),
            )

        if "session" in raw:
            s = raw["session"]
            settings.session = SessionConfig(
                ttl_minutes=int(s.get("ttl_minutes", 30)),
                max_processed_events=int(s.get("max_processed_events", 50)),
                max_auto_hops=int(s.get("max_auto_hops", 5)),
            )

        if "reports" in raw:
            r = raw["reports"]
            settings.reports = ReportsConfig(
                output_dir=r.get("output_dir", "./public/reports"),
                public_base_url=(_unresolved(r.get("public_base_url", ""))
                                 or "http://localhost:8000").rstrip("/"),
                dispose_after_seconds=float(r.get("dispose_after_seconds", 120.0)),
                max_age_minutes=int(r.get("max_age_minutes", 60)),
            )

        if "renderer" in raw:
            rd = raw["renderer"]
            settings.renderer = RendererConfig(
                type=rd.get("type", "text"),
                url=_unresolved(rd.get("url", "")),
                timeout_seconds=float(rd.get("timeout_seconds", 30.0)),
            )

        if "lawyers" in raw:
            lw = raw["lawyers"]
            settings.lawyers = LawyerConfig(
                new_process_number=_unresolved(lw.get("new_process_number", "")),
                existing_process_number=_unresolved(lw.get("existing_process_number", "")),
                timezone=lw.get("timezone", settings.timezone),
            )

        if "channels" in raw:
            for ch_name, ch_data in raw["channels"].items():
                settings.channels[ch_name] = ChannelConfig(
                    enabled=ch_data.get("enabled", False),
                    credentials={k: _unresolved(v) for k, v in ch_data.get("credentials", {}).items()},
                )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
