"""
SecretBundle — credentials generated once per installation.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class SecretEntry(BaseModel):
    value: str
    created_at: str = Field(default_factory=_now_iso)
    source: str = "generated"  # generated, supplied, fetched, adopted


class SecretBundle(BaseModel):
    """All secrets for one host, keyed by name (``db_root_password``, ...)."""

    schema_version: int = 1
    installation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = Field(default_factory=_now_iso)
    values: dict[str, SecretEntry] = Field(default_factory=dict)
