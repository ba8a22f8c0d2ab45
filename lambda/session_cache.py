from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from wide_log import note

KEY_ATTRIBUTE = "userId"
EXPIRY_ATTRIBUTE = "expirationTime"


@dataclass(frozen=True)
class SessionArtifact:
    composite_key: str
    federation_url: str
    expires_at: int
    username: str
    product_key: str
    created_at: str
    last_accessed_at: str


@dataclass(frozen=True)
class StepOutcome:
    step: str
    ok: bool
    detail: str = ""


def composite_key(sub: str, product_key: str) -> str:
    return f"{sub}#{product_key}"


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def _ddb_str(item: dict[str, Any], key: str, default: str = "") -> str:
    val = item.get(key)
    if not val or "S" not in val:
        return default
    return str(val["S"])


def _ddb_int(item: dict[str, Any], key: str, default: int = 0) -> int:
    val = item.get(key)
    if not val or "N" not in val:
        return default
    try:
        return int(val["N"])
    except (TypeError, ValueError):
        return default


def artifact_to_item(artifact: SessionArtifact) -> dict[str, Any]:
    return {
        KEY_ATTRIBUTE: {"S": artifact.composite_key},
        "federationUrl": {"S": artifact.federation_url},
        EXPIRY_ATTRIBUTE: {"N": str(int(artifact.expires_at))},
        "username": {"S": artifact.username},
        "productType": {"S": artifact.product_key},
        "createdAt": {"S": artifact.created_at},
        "lastAccessed": {"S": artifact.last_accessed_at},
    }


def item_to_artifact(item: dict[str, Any]) -> SessionArtifact:
    key = _ddb_str(item, KEY_ATTRIBUTE)
    product_key = _ddb_str(item, "productType") or key.partition("#")[2]
    return SessionArtifact(
        composite_key=key,
        federation_url=_ddb_str(item, "federationUrl"),
        expires_at=_ddb_int(item, EXPIRY_ATTRIBUTE),
        username=_ddb_str(item, "username"),
        product_key=product_key,
        created_at=_ddb_str(item, "createdAt"),
        last_accessed_at=_ddb_str(item, "lastAccessed"),
    )


class SessionCache:
    """
    Federation URLs keyed by "<sub>#<productKey>".

    Expiry is enforced on read. The table's TTL attribute only cleans up
    eventually and is never trusted to hide expired rows.
    """

    def __init__(
        self,
        ddb_client: Any,
        *,
        table_name: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ddb = ddb_client
        self._table = table_name
        self._clock = clock

    def now_epoch(self) -> int:
        return int(self._clock())

    def now_iso(self) -> str:
        return _iso(self._clock())

    def get_valid(self, key: str) -> SessionArtifact | None:
        out = self._ddb.get_item(
            TableName=self._table,
            Key={KEY_ATTRIBUTE: {"S": key}},
            ConsistentRead=True,
        )
        item = out.get("Item")
        if not item:
            return None

        artifact = item_to_artifact(item)
        if artifact.expires_at < self.now_epoch():
            self.invalidate(key)
            return None

        accessed_at = self.now_iso()
        try:
            self._ddb.update_item(
                TableName=self._table,
                Key={KEY_ATTRIBUTE: {"S": key}},
                ConditionExpression="attribute_exists(#k)",
                UpdateExpression="SET lastAccessed = :accessed",
                ExpressionAttributeNames={"#k": KEY_ATTRIBUTE},
                ExpressionAttributeValues={":accessed": {"S": accessed_at}},
            )
        except Exception as e:
            # Purged between read and bump (revoke/terminate); do not hand it out.
            if type(e).__name__ == "ConditionalCheckFailedException":
                return None
            raise
        return replace(artifact, last_accessed_at=accessed_at)

    def put(self, artifact: SessionArtifact) -> None:
        self._ddb.put_item(TableName=self._table, Item=artifact_to_item(artifact))

    def invalidate(self, key: str) -> None:
        self._ddb.delete_item(TableName=self._table, Key={KEY_ATTRIBUTE: {"S": key}})

    def invalidate_all(self, sub: str, product_keys: Iterable[str]) -> list[StepOutcome]:
        outcomes: list[StepOutcome] = []
        for product_key in product_keys:
            key = composite_key(sub, product_key)
            try:
                self.invalidate(key)
            except Exception as exc:
                note(
                    "marketplace_cache_purge_key_failed",
                    sub=sub,
                    product=product_key,
                    error={"type": type(exc).__name__, "message": str(exc)},
                )
                outcomes.append(StepOutcome(step=f"purge:{product_key}", ok=False, detail=str(exc)))
                continue
            outcomes.append(StepOutcome(step=f"purge:{product_key}", ok=True))
        return outcomes
