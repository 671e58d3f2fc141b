from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any
from uuid import uuid4


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEnvelope:
    """One committed row change, as delivered on a real-time channel."""

    event_version: str
    change_type: ChangeType
    table: str
    trace_id: str
    occurred_at: str
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def row_id(self) -> str | None:
        source = self.record or self.old_record or {}
        value = source.get("id")
        return str(value) if value is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_version": self.event_version,
            "change_type": self.change_type.value,
            "table": self.table,
            "trace_id": self.trace_id,
            "occurred_at": self.occurred_at,
            "record": self.record,
            "old_record": self.old_record,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ChangeEnvelope":
        return cls(
            event_version=str(raw.get("event_version", "v1")),
            change_type=ChangeType(str(raw["change_type"]).upper()),
            table=str(raw.get("table", "")),
            trace_id=str(raw.get("trace_id", "")),
            occurred_at=str(raw.get("occurred_at", "")),
            record=raw.get("record"),
            old_record=raw.get("old_record"),
            meta=dict(raw.get("meta") or {}),
        )


def build_change_envelope(
    change_type: ChangeType,
    table: str,
    *,
    record: dict[str, Any] | None = None,
    old_record: dict[str, Any] | None = None,
    trace_id: str | None = None,
) -> ChangeEnvelope:
    return ChangeEnvelope(
        event_version="v1",
        change_type=change_type,
        table=table,
        trace_id=trace_id or str(uuid4()),
        occurred_at=datetime.now(timezone.utc).isoformat(),
        record=record,
        old_record=old_record,
    )
