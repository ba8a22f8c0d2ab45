from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from federation_errors import CredentialError

DEFAULT_SESSION_DURATION_SECONDS = 3600
_TAG_VALUE_MAX = 256


@dataclass(frozen=True)
class Identity:
    sub: str
    username: str


@dataclass(frozen=True)
class DelegatedCredentials:
    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str = field(repr=False)
    expiration: datetime | None = None


def role_session_name(username: str, now_ms: int) -> str:
    # STS RoleSessionName constraints are relatively strict (<= 64 chars, limited charset).
    sanitized = re.sub(r"[^a-zA-Z0-9+=,.@_-]", "", f"marketplace-{username}-{now_ms}")
    return sanitized[:64] or "marketplace-session"


def _tag_value(value: str) -> str:
    return re.sub(r"[^\w\s.:/=+@-]", "", value or "")[:_TAG_VALUE_MAX]


class CredentialBroker:
    """Assumes the fixed marketplace role on behalf of one identity."""

    def __init__(
        self,
        sts_client: Any,
        *,
        role_arn: str,
        duration_seconds: int = DEFAULT_SESSION_DURATION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sts = sts_client
        self._role_arn = role_arn
        self._duration_seconds = duration_seconds
        self._clock = clock

    @property
    def duration_seconds(self) -> int:
        return self._duration_seconds

    def assume(self, identity: Identity) -> DelegatedCredentials:
        try:
            out = self._sts.assume_role(
                RoleArn=self._role_arn,
                RoleSessionName=role_session_name(identity.username, int(self._clock() * 1000)),
                DurationSeconds=self._duration_seconds,
                Tags=[
                    {"Key": "userId", "Value": _tag_value(identity.sub)},
                    {"Key": "username", "Value": _tag_value(identity.username)},
                ],
            )
        except Exception as exc:
            raise CredentialError(f"assume role failed: {exc}") from exc

        creds = out.get("Credentials") or {}
        access_key_id = str(creds.get("AccessKeyId") or "")
        secret_access_key = str(creds.get("SecretAccessKey") or "")
        session_token = str(creds.get("SessionToken") or "")
        if not (access_key_id and secret_access_key and session_token):
            raise CredentialError("Failed to obtain credentials")
        expiration = creds.get("Expiration")
        return DelegatedCredentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=session_token,
            expiration=expiration if isinstance(expiration, datetime) else None,
        )
