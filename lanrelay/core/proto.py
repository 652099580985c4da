from __future__ import annotations

import base64
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Frame types (websocket JSON envelopes)
# ---------------------------------------------------------------------------

# client -> server
T_REGISTER = "REGISTER"
T_SUBMIT = "SUBMIT"
T_LIST_DEVICES = "LIST_DEVICES"

# server -> client
T_REGISTERED = "REGISTERED"
T_DEVICES = "DEVICES"
T_FILE_TRANSFER = "FILE_TRANSFER"
T_SUBMIT_RESULT = "SUBMIT_RESULT"
T_ERROR = "ERROR"

SERVER_NAME = "lanrelay"
BROADCAST = "*"

ERROR_CODES = {
    "NO_FILES",
    "NO_TARGET",
    "TARGET_UNAVAILABLE",
    "QUEUE_FULL",
    "BAD_FRAME",
    "UNKNOWN_TYPE",
}

DEFAULT_NAME = "Unknown"
MAX_NAME_LEN = 40
DEFAULT_MIME = "application/octet-stream"


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Envelope model
# ---------------------------------------------------------------------------

class Envelope(BaseModel):
    """JSON envelope carried over the websocket in both directions."""

    type: str
    from_: str = Field(alias="from")
    to: str
    ts: int
    payload: Dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("ts")
    @classmethod
    def _ts_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("timestamp must be non-negative")
        return value


def build_frame(
    type: str,
    from_: str,
    to: str,
    payload: Dict[str, Any],
    *,
    ts: int | None = None,
) -> Dict[str, Any]:
    """Create an envelope dict ready for ``json.dumps``."""

    return {
        "type": type,
        "from": from_,
        "to": to,
        "ts": now_ms() if ts is None else ts,
        "payload": payload,
    }


# ---------------------------------------------------------------------------
# Request payloads (client -> server)
# ---------------------------------------------------------------------------

def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


class RegisterPayload(BaseModel):
    """REGISTER payload. Anything unusable degrades to ``None`` instead of failing."""

    client_id: Optional[str] = Field(default=None, alias="clientId")
    name: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("client_id", "name", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[str]:
        if isinstance(value, (dict, list)):
            return None
        return _optional_str(value)


class FileEntry(BaseModel):
    name: str = Field(min_length=1)
    mime_type: str = Field(default=DEFAULT_MIME, alias="mimeType")
    data: str

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("mime_type", mode="before")
    @classmethod
    def _default_mime(cls, value: Any) -> str:
        return _optional_str(value) or DEFAULT_MIME


class SubmitPayload(BaseModel):
    files: List[FileEntry] = Field(default_factory=list)
    to_client_id: Optional[str] = Field(default=None, alias="toClientId")
    to_connection_id: Optional[str] = Field(default=None, alias="toConnectionId")
    from_name: Optional[str] = Field(default=None, alias="fromName")
    ref: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("to_client_id", "to_connection_id", "from_name", "ref", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Optional[str]:
        return _optional_str(value)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_name(name: Optional[str]) -> str:
    """Trim and cap a display name; blank or missing becomes ``"Unknown"``."""

    if not name or not name.strip():
        return DEFAULT_NAME
    return name.strip()[:MAX_NAME_LEN]


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(value: str) -> bytes:
    """Strict standard base64 decode; raises ``ValueError`` on bad input."""

    return base64.b64decode(value.encode("ascii"), validate=True)


__all__ = [
    "Envelope",
    "ERROR_CODES",
    "RegisterPayload",
    "FileEntry",
    "SubmitPayload",
    "now_ms",
    "build_frame",
    "normalize_name",
    "b64encode",
    "b64decode",
]
