from __future__ import annotations

import base64
import json
import os
import sys
from dataclasses import dataclass
from typing import Any


class MarketplaceCliError(Exception):
    pass


class UsageError(MarketplaceCliError):
    pass


class OpError(MarketplaceCliError):
    pass


MARKETPLACE_API_ENDPOINT = "MARKETPLACE_API_ENDPOINT"
MARKETPLACE_COGNITO_CLIENT_ID = "MARKETPLACE_COGNITO_CLIENT_ID"
MARKETPLACE_COGNITO_USERNAME = "MARKETPLACE_COGNITO_USERNAME"
MARKETPLACE_COGNITO_PASSWORD = "MARKETPLACE_COGNITO_PASSWORD"
MARKETPLACE_ID_TOKEN = "MARKETPLACE_ID_TOKEN"
MARKETPLACE_ACCESS_TOKEN = "MARKETPLACE_ACCESS_TOKEN"


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


@dataclass(frozen=True)
class GlobalOpts:
    endpoint: str
    client_id: str
    region: str
    pretty: bool
    quiet: bool


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _require_str(val: str | None, name: str, *, hint: str) -> str:
    v = (val or "").strip()
    if not v:
        raise UsageError(f"missing {name} ({hint})")
    return v


def _print_json(obj: Any, *, pretty: bool) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")


def _jwt_payload(token: str) -> dict[str, Any]:
    parts = (token or "").split(".")
    if len(parts) < 2:
        raise OpError("invalid JWT: expected at least 2 dot-separated parts")
    payload_b64 = parts[1]
    payload_b64 += "=" * (-len(payload_b64) % 4)
    try:
        raw = base64.urlsafe_b64decode(payload_b64.encode("utf-8"))
        val = json.loads(raw.decode("utf-8"))
    except Exception as e:
        raise OpError(f"invalid JWT payload: {e}") from e
    if not isinstance(val, dict):
        raise OpError("invalid JWT payload: expected JSON object")
    return val


def _load_json_object(*, raw: bytes, label: str) -> dict[str, Any]:
    text = raw.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(text) if text.strip() else {}
    except Exception as e:
        raise OpError(f"invalid JSON from {label}: {e}; body={text}") from e
    if not isinstance(parsed, dict):
        raise OpError(f"invalid JSON from {label}: expected object")
    return parsed
