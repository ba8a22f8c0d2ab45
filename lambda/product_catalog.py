from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable

from federation_errors import ConfigUnavailable, ProductNotFound
from wide_log import note

KNOWN_PRODUCT_KEYS = (
    "gitlab",
    "okta",
    "newrelic",
    "sisense",
    "crowdstrike",
    "trend",
    "wiz",
    "teradata",
    "ibm",
    "jenkins",
    "redhat",
    "grafana",
)

DEFAULT_CATALOG_TTL_SECONDS = 300


@dataclass(frozen=True)
class ProductRecord:
    external_id: str
    display_name: str
    vendor: str


def is_known_product_key(product_key: str) -> bool:
    return product_key in KNOWN_PRODUCT_KEYS


def parse_catalog(raw: bytes | str) -> dict[str, ProductRecord]:
    """
    Parse the catalog document stored in S3:

      {"products": {"gitlab": {"id": "prodview-...", "name": "GitLab", "vendor": "GitLab"}}}

    Entries without an id are dropped so they resolve as not found.
    """

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    doc = json.loads(raw)
    if not isinstance(doc, dict) or not isinstance(doc.get("products"), dict):
        raise ValueError("catalog document must contain a 'products' object")

    out: dict[str, ProductRecord] = {}
    for key, entry in doc["products"].items():
        if not isinstance(entry, dict):
            continue
        external_id = str(entry.get("id") or "").strip()
        if not external_id:
            continue
        out[str(key)] = ProductRecord(
            external_id=external_id,
            display_name=str(entry.get("name") or "").strip(),
            vendor=str(entry.get("vendor") or "").strip(),
        )
    return out


class CatalogResolver:
    """Product catalog read from S3 with a bounded-staleness in-memory copy.

    Once a catalog has been loaded, store failures fall back to the last copy.
    Concurrent refreshes simply overwrite each other.
    """

    def __init__(
        self,
        s3_client: Any,
        *,
        bucket: str,
        key: str,
        ttl_seconds: int = DEFAULT_CATALOG_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._s3 = s3_client
        self._bucket = bucket
        self._key = key
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._products: dict[str, ProductRecord] | None = None
        self._refreshed_at = 0.0

    def _read_store(self) -> dict[str, ProductRecord]:
        out = self._s3.get_object(Bucket=self._bucket, Key=self._key)
        body = out.get("Body")
        if body is None:
            raise ValueError("empty response from S3")
        return parse_catalog(body.read())

    def load_catalog(self) -> dict[str, ProductRecord]:
        now = self._clock()
        if self._products is not None and (now - self._refreshed_at) < self._ttl_seconds:
            return self._products

        try:
            products = self._read_store()
        except Exception as exc:
            if self._products is not None:
                note(
                    "marketplace_catalog_stale_fallback",
                    bucket=self._bucket,
                    key=self._key,
                    error={"type": type(exc).__name__, "message": str(exc)},
                )
                return self._products
            raise ConfigUnavailable(
                f"failed to load product configuration from s3://{self._bucket}/{self._key}: {exc}"
            ) from exc

        self._products = products
        self._refreshed_at = now
        return products

    def resolve(self, product_key: str) -> ProductRecord:
        record = self.load_catalog().get(product_key)
        if record is None:
            raise ProductNotFound(f"product configuration not found for: {product_key}")
        return record
