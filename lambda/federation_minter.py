from __future__ import annotations

import json
from http.client import HTTPException
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from credential_broker import DelegatedCredentials
from endpoint_allowlist import AWS_FEDERATION_ENDPOINT, is_allowed
from federation_errors import FederationError, SecurityError
from product_catalog import CatalogResolver

MARKETPLACE_PRODUCT_BASE_URL = "https://aws.amazon.com/marketplace/pp/"
DEFAULT_ISSUER = "YourApplication"
DEFAULT_TIMEOUT_SECONDS = 10

PostForm = Callable[..., tuple[int, bytes]]


def _post_form(*, url: str, fields: dict[str, str], timeout_seconds: int) -> tuple[int, bytes]:
    req = Request(url, data=urlencode(fields).encode("utf-8"), method="POST")
    req.add_header("Content-Type", "application/x-www-form-urlencoded;charset=UTF-8")
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            return int(getattr(resp, "status", 200)), resp.read()
    except HTTPError as e:
        data = e.read() if hasattr(e, "read") else b""
        return int(getattr(e, "code", 0) or 0), data


def session_descriptor(credentials: DelegatedCredentials) -> str:
    return json.dumps(
        {
            "sessionId": credentials.access_key_id,
            "sessionKey": credentials.secret_access_key,
            "sessionToken": credentials.session_token,
        }
    )


def product_destination(external_id: str) -> str:
    return f"{MARKETPLACE_PRODUCT_BASE_URL}{external_id}"


class FederationMinter:
    """Turns delegated credentials into a console sign-in URL for one product."""

    def __init__(
        self,
        catalog: CatalogResolver,
        *,
        issuer: str = DEFAULT_ISSUER,
        endpoint: str = AWS_FEDERATION_ENDPOINT,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        post_form: PostForm = _post_form,
    ) -> None:
        self._catalog = catalog
        self._issuer = issuer
        self._endpoint = endpoint
        self._timeout_seconds = timeout_seconds
        self._post_form = post_form

    def _signin_token(self, credentials: DelegatedCredentials) -> str:
        if not is_allowed(self._endpoint):
            raise SecurityError("Invalid endpoint - SSRF protection")

        try:
            status, raw = self._post_form(
                url=self._endpoint,
                fields={"Action": "getSigninToken", "Session": session_descriptor(credentials)},
                timeout_seconds=self._timeout_seconds,
            )
        except (URLError, OSError, HTTPException) as exc:
            raise FederationError(f"Federation request failed: {exc}") from exc

        if status < 200 or status >= 300:
            raise FederationError(f"Federation request failed: status={status}")
        try:
            data: Any = json.loads(raw.decode("utf-8"))
        except Exception as exc:
            raise FederationError(f"Invalid federation response: {exc}") from exc
        token = str(data.get("SigninToken") or "") if isinstance(data, dict) else ""
        if not token:
            raise FederationError("No signin token received")
        return token

    def mint(self, credentials: DelegatedCredentials, product_key: str) -> str:
        product = self._catalog.resolve(product_key)
        token = self._signin_token(credentials)
        params = urlencode(
            {
                "Action": "login",
                "Destination": product_destination(product.external_id),
                "SigninToken": token,
                "Issuer": self._issuer,
            }
        )
        return f"{self._endpoint}?{params}"
