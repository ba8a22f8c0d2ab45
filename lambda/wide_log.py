from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def emit(record: dict[str, Any]) -> None:
    # One JSON object per line so CloudWatch Logs Insights can parse fields.
    print(json.dumps(record, separators=(",", ":"), sort_keys=True, default=str))


def note(event: str, **fields: Any) -> None:
    record: dict[str, Any] = {"event": event, "ts": now_iso()}
    record.update(fields)
    emit(record)
