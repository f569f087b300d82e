from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple

import yaml
from pydantic import BaseModel, Field

from odali.core.calltoken import DEFAULT_TTL_SECS, CallTokenIssuer


class CallTokenSettings(BaseModel):
    account_sid: Optional[str] = None
    api_key_sid: Optional[str] = None
    api_key_secret: Optional[str] = None
    ttl_secs: int = Field(default=DEFAULT_TTL_SECS, gt=0)

    def issuer(self) -> CallTokenIssuer:
        return CallTokenIssuer(
            account_sid=self.account_sid or os.getenv("TWILIO_ACCOUNT_SID"),
            api_key_sid=self.api_key_sid or os.getenv("TWILIO_API_KEY_SID"),
            api_key_secret=self.api_key_secret or os.getenv("TWILIO_API_KEY_SECRET"),
            ttl_secs=self.ttl_secs,
        )


class ServerSettings(BaseModel):
    http_listen: str = "0.0.0.0:3000"
    ws_listen: str = "0.0.0.0:3001"
    db_path: str = "data/odali.db"
    retention_hours: float = Field(default=48, gt=0)
    sweep_interval_secs: int = Field(default=3600, gt=0)
    log_level: str = "INFO"
    call_tokens: CallTokenSettings = Field(default_factory=CallTokenSettings)

    @property
    def retention_ms(self) -> int:
        return int(self.retention_hours * 3600 * 1000)

    def http_address(self) -> Tuple[str, int]:
        host, port = parse_listen(self.http_listen)
        # hosting platforms hand the port over in $PORT
        env_port = os.getenv("PORT")
        return host, int(env_port) if env_port else port

    def ws_address(self) -> Tuple[str, int]:
        return parse_listen(self.ws_listen)


def parse_listen(value: str) -> Tuple[str, int]:
    host, port = value.rsplit(":", 1)
    return host, int(port)


def load_settings(path: Optional[Path | str] = None) -> ServerSettings:
    """Read the YAML config (optional) into validated settings."""
    if path is None:
        return ServerSettings()
    config_path = Path(path)
    data = yaml.safe_load(config_path.read_text()) or {}
    return ServerSettings.model_validate(data)


__all__ = ["CallTokenSettings", "ServerSettings", "load_settings", "parse_listen"]
