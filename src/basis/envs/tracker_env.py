from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, field_validator

from basis.application.reserve.use_cases.verifier import (
    DEFAULT_EMERGENCY_WINDOW_MS,
    DEFAULT_MIN_TOP_UP,
)
from basis.application.tracker.use_cases.ledger import DEFAULT_ANCHORED_RETENTION
from basis.crypto.key_utils import HASH_SIZE, POINT_SIZE, secret_key_from_hex
from basis.domain.errors import MalformedInputError


def _validate_hex(v: str, size: int, name: str) -> str:
    try:
        raw = bytes.fromhex(v)
    except ValueError as e:
        raise ValueError(f"{name} must be hex: {e}") from e
    if len(raw) != size:
        raise ValueError(f"{name} must be {size} bytes, got {len(raw)}")
    return raw.hex()


class Settings(BaseModel):
    database_url: str

    api_host: str
    api_port: int
    api_debug: bool
    api_cors_origins: list[str]

    app_name: str
    app_version: str

    secret_key_hex: str
    tracker_id_hex: str

    node_base_url: str
    node_api_key: Optional[str] = None
    node_timeout_seconds: float = 10.0

    emergency_window_ms: int = DEFAULT_EMERGENCY_WINDOW_MS
    anchor_staleness_ms: Optional[int] = None
    min_top_up: int = DEFAULT_MIN_TOP_UP
    anchored_retention: int = DEFAULT_ANCHORED_RETENTION

    reserve_script_hash_hex: str
    owner_public_key_hex: Optional[str] = None
    note_token_ids: list[str] = []
    start_height: int = 1
    poll_interval_seconds: float = 5.0

    @field_validator("secret_key_hex")
    @classmethod
    def validate_secret_key_hex(cls, v: str) -> str:
        """Validate that the secret key is a 32-byte scalar in [1, N)."""
        if not v:
            raise ValueError("Tracker secret key cannot be empty")
        try:
            secret_key_from_hex(v)
        except MalformedInputError as e:
            raise ValueError(f"Invalid tracker secret key: {e}") from e
        return bytes.fromhex(v).hex()

    @field_validator("tracker_id_hex")
    @classmethod
    def validate_tracker_id_hex(cls, v: str) -> str:
        return _validate_hex(v, HASH_SIZE, "tracker_id_hex")

    @field_validator("owner_public_key_hex")
    @classmethod
    def validate_owner_public_key_hex(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_hex(v, POINT_SIZE, "owner_public_key_hex")

    @field_validator("emergency_window_ms", "min_top_up", "anchored_retention")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @property
    def secret_key(self) -> int:
        return secret_key_from_hex(self.secret_key_hex)


def get_settings() -> Settings:
    api_debug_str = os.environ.get("TRACKER_API_DEBUG")
    api_cors_origins_str = os.environ.get("TRACKER_API_CORS_ORIGINS")
    api_port_str = os.environ.get("TRACKER_API_PORT")
    staleness_str = os.environ.get("TRACKER_ANCHOR_STALENESS_MS")
    note_tokens_str = os.environ.get("TRACKER_NOTE_TOKEN_IDS")

    return Settings(
        database_url=os.environ.get("TRACKER_DATABASE_URL", "redis://localhost:6379/0"),
        api_host=os.environ.get("TRACKER_API_HOST", "0.0.0.0"),
        api_port=int(api_port_str) if api_port_str is not None else 8002,
        api_debug=api_debug_str.lower() == "true"
        if api_debug_str is not None
        else False,
        api_cors_origins=api_cors_origins_str.split(",")
        if api_cors_origins_str is not None
        else ["*"],
        app_name=os.environ.get("TRACKER_APP_NAME", "Basis"),
        app_version=os.environ.get("TRACKER_APP_VERSION", "0.1.0"),
        secret_key_hex=os.environ.get("TRACKER_SECRET_KEY_HEX", ""),
        tracker_id_hex=os.environ.get("TRACKER_TRACKER_ID_HEX", ""),
        node_base_url=os.environ.get("TRACKER_NODE_BASE_URL", "http://localhost:9053"),
        node_api_key=os.environ.get("TRACKER_NODE_API_KEY"),
        node_timeout_seconds=float(
            os.environ.get("TRACKER_NODE_TIMEOUT_SECONDS", "10")
        ),
        emergency_window_ms=int(
            os.environ.get("TRACKER_EMERGENCY_WINDOW_MS", str(DEFAULT_EMERGENCY_WINDOW_MS))
        ),
        anchor_staleness_ms=int(staleness_str) if staleness_str else None,
        min_top_up=int(os.environ.get("TRACKER_MIN_TOP_UP", str(DEFAULT_MIN_TOP_UP))),
        anchored_retention=int(
            os.environ.get("TRACKER_ANCHORED_RETENTION", str(DEFAULT_ANCHORED_RETENTION))
        ),
        reserve_script_hash_hex=os.environ.get("TRACKER_RESERVE_SCRIPT_HASH_HEX", ""),
        owner_public_key_hex=os.environ.get("TRACKER_OWNER_PUBLIC_KEY_HEX") or None,
        note_token_ids=[t for t in note_tokens_str.split(",") if t]
        if note_tokens_str
        else [],
        start_height=int(os.environ.get("TRACKER_START_HEIGHT", "1")),
        poll_interval_seconds=float(
            os.environ.get("TRACKER_POLL_INTERVAL_SECONDS", "5")
        ),
    )
