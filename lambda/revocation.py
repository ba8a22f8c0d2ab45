from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from credential_broker import Identity
from federation_errors import RevocationError
from product_catalog import KNOWN_PRODUCT_KEYS
from session_cache import SessionCache, StepOutcome
from wide_log import note

REVOKE_POLICY_NAME = "AWSRevokeOlderSessions"
DEFAULT_PROPAGATION_SECONDS = 1.0


@dataclass(frozen=True)
class RevocationResult:
    revoked_at: str
    steps: list[StepOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(s.ok for s in self.steps)


def role_name_from_arn(role_name_or_arn: str) -> str:
    # arn:aws:iam::123456789012:role/path/Name -> Name
    raw = (role_name_or_arn or "").strip()
    return raw.rsplit("/", 1)[-1] if "/" in raw else raw


def deny_older_sessions_policy(cutoff_iso: str) -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": {
            "Effect": "Deny",
            "Action": "*",
            "Resource": "*",
            "Condition": {"DateLessThan": {"aws:TokenIssueTime": cutoff_iso}},
        },
    }


class RevocationEngine:
    """
    Hard revocation for the marketplace role.

    The deny policy is role-wide: every session issued under the role before
    the cutoff is rejected, not just the caller's. When the policy write
    fails the cache purge and sign-out are skipped.
    """

    def __init__(
        self,
        iam_client: Any,
        cognito_client: Any,
        cache: SessionCache,
        *,
        role_arn: str,
        product_keys: Iterable[str] = KNOWN_PRODUCT_KEYS,
        propagation_seconds: float = DEFAULT_PROPAGATION_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._iam = iam_client
        self._cognito = cognito_client
        self._cache = cache
        self._role_arn = role_arn
        self._product_keys = tuple(product_keys)
        self._propagation_seconds = propagation_seconds
        self._sleep = sleep
        self._clock = clock

    def _install_deny(self, cutoff_iso: str) -> None:
        role_name = role_name_from_arn(self._role_arn)
        if not role_name:
            raise RevocationError("Invalid role name or ARN")
        try:
            self._iam.put_role_policy(
                RoleName=role_name,
                PolicyName=REVOKE_POLICY_NAME,
                PolicyDocument=json.dumps(deny_older_sessions_policy(cutoff_iso)),
            )
        except Exception as exc:
            raise RevocationError(f"failed to apply deny policy to role {role_name}: {exc}") from exc
        if self._propagation_seconds > 0:
            self._sleep(self._propagation_seconds)

    def sign_out(self, access_token: str | None) -> StepOutcome | None:
        if not access_token:
            return None
        try:
            self._cognito.global_sign_out(AccessToken=access_token)
        except Exception as exc:
            note(
                "marketplace_global_sign_out_failed",
                error={"type": type(exc).__name__, "message": str(exc)},
            )
            return StepOutcome(step="sign_out", ok=False, detail=str(exc))
        return StepOutcome(step="sign_out", ok=True)

    def revoke_all(self, identity: Identity, access_token: str | None = None) -> RevocationResult:
        cutoff = self._clock().astimezone(timezone.utc)
        cutoff_iso = cutoff.isoformat(timespec="milliseconds").replace("+00:00", "Z")

        self._install_deny(cutoff_iso)
        steps = [StepOutcome(step="deny_policy", ok=True)]
        steps.extend(self._cache.invalidate_all(identity.sub, self._product_keys))
        signed_out = self.sign_out(access_token)
        if signed_out is not None:
            steps.append(signed_out)

        note(
            "marketplace_session_revocation",
            sub=identity.sub,
            role_arn=self._role_arn,
            revoked_at=cutoff_iso,
            failed_steps=[s.step for s in steps if not s.ok],
        )
        return RevocationResult(revoked_at=cutoff_iso, steps=steps)
