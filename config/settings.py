"""
Configuration loader for the broadcast service.
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
class PacingProfile:
    """Jitter window for the delay between two deliveries."""
    base_delay_ms: int = 1200
    max_delay_ms: int = 1800

    @property
    def average_delay_ms(self) -> float:
        return (self.base_delay_ms + self.max_delay_ms) / 2

    @property
    def messages_per_minute(self) -> int:
        if not self.average_delay_ms:
            return 0
        return round(60000 / self.average_delay_ms)


def _default_profiles() -> dict[str, PacingProfile]:
    return {
        "safe": PacingProfile(base_delay_ms=1200, max_delay_ms=1800),   # ~50/min
        "fast": PacingProfile(base_delay_ms=750, max_delay_ms=1000),    # ~80/min
    }


@dataclass
class BroadcastConfig:
    default_pacing: str = "safe"
    pacing_profiles: dict[str, PacingProfile] = field(default_factory=_default_profiles)
    max_retries: int = 3
    backoff_multiplier: float = 2.0
    max_backoff_ms: int = 30000
    checkpoint_interval: int = 10       # persist every N recipients
    progress_interval: int = 25         # report progress every N recipients
    message_header: str = "📢 **Message from {guild}:**\n\n"
    preview_length: int = 100

    def get_profile(self, name: Optional[str] = None) -> PacingProfile:
        name = name or self.default_pacing
        if name not in self.pacing_profiles:
            raise ValueError(
                f"Unknown pacing profile '{name}'. "
                f"Available: {sorted(self.pacing_profiles)}"
            )
        return self.pacing_profiles[name]


@dataclass
class StorageConfig:
    backend: str = "file"               # "file" | "memory"
    data_dir: str = "./data"


@dataclass
class DeliveryConfig:
    backend: str = "memory"             # "discord" | "memory"
    bot_token: str = ""
    api_base_url: str = "https://discord.com/api/v10"
    timeout_s: float = 15.0


@dataclass
class Settings:
    app_name: str = "SafeBroadcast"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = ""
    json_logs: bool = False
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)


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


def _parse_broadcast(raw: dict[str, Any]) -> BroadcastConfig:
    defaults = BroadcastConfig()
    profiles = _default_profiles()
    for name, p in (raw.get("pacing_profiles") or {}).items():
        profile = PacingProfile(
            base_delay_ms=int(p.get("base_delay_ms", 1200)),
            max_delay_ms=int(p.get("max_delay_ms", 1800)),
        )
        if profile.max_delay_ms < profile.base_delay_ms:
            raise ValueError(
                f"Pacing profile '{name}': max_delay_ms must be >= base_delay_ms"
            )
        profiles[name] = profile

    config = BroadcastConfig(
        default_pacing=raw.get("default_pacing", defaults.default_pacing),
        pacing_profiles=profiles,
        max_retries=int(raw.get("max_retries", defaults.max_retries)),
        backoff_multiplier=float(raw.get("backoff_multiplier", defaults.backoff_multiplier)),
        max_backoff_ms=int(raw.get("max_backoff_ms", defaults.max_backoff_ms)),
        checkpoint_interval=int(raw.get("checkpoint_interval", defaults.checkpoint_interval)),
        progress_interval=int(raw.get("progress_interval", defaults.progress_interval)),
        message_header=raw.get("message_header", defaults.message_header),
        preview_length=int(raw.get("preview_length", defaults.preview_length)),
    )
    config.get_profile()  # default_pacing must name a known profile
    return config


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "BROADCAST_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.log_level = raw.get("log_level", settings.log_level)
        settings.log_dir = raw.get("log_dir", settings.log_dir)
        settings.json_logs = raw.get("json_logs", settings.json_logs)

        if "broadcast" in raw:
            settings.broadcast = _parse_broadcast(raw["broadcast"] or {})

        if "storage" in raw:
            st = raw["storage"] or {}
            settings.storage = StorageConfig(
                backend=st.get("backend", settings.storage.backend),
                data_dir=st.get("data_dir", settings.storage.data_dir),
            )

        if "delivery" in raw:
            d = raw["delivery"] or {}
            settings.delivery = DeliveryConfig(
                backend=d.get("backend", settings.delivery.backend),
                bot_token=d.get("bot_token", ""),
                api_base_url=d.get("api_base_url", settings.delivery.api_base_url),
                timeout_s=float(d.get("timeout_s", settings.delivery.timeout_s)),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
