from __future__ import annotations

from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .cli_shared import OpError, _load_json_object

SESSION_PATH = "/marketplace-url"
REVOKE_PATH = "/marketplace-url/revoke"
ACCESS_TOKEN_HEADER = "X-Marketplace-Access-Token"


def _http_request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None = None,
    timeout_seconds: int = 30,
) -> tuple[int, dict[str, str], bytes]:
    req = Request(url, data=body, method=str(method).upper())
    for k, v in headers.items():
        req.add_header(k, v)
    try:
        with urlopen(req, timeout=timeout_seconds) as resp:
            status = getattr(resp, "status", 200)
            hdrs = {k.lower(): v for k, v in dict(resp.headers).items()}
            data = resp.read()
            return int(status), hdrs, data
    except HTTPError as e:
        hdrs = {k.lower(): v for k, v in dict(e.headers or {}).items()}
        data = e.read() if hasattr(e, "read") else b""
        return int(getattr(e, "code", 0) or 0), hdrs, data
    except URLError as e:
        raise OpError(f"http request failed: {e}") from e


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + "/" + path.lstrip("/")


def session_api_request(
    *,
    method: str,
    endpoint: str,
    path: str,
    id_token: str,
    access_token: str = "",
    query: dict[str, Any] | None = None,
) -> dict[str, Any]:
    url = _join_url(endpoint, path)
    clean_query = {k: v for k, v in (query or {}).items() if v not in (None, "")}
    if clean_query:
        url = f"{url}?{urlencode(clean_query)}"
    headers = {"Authorization": f"Bearer {id_token}", "Accept": "application/json"}
    if access_token:
        headers[ACCESS_TOKEN_HEADER] = access_token
    status, _hdrs, raw = _http_request(method=method, url=url, headers=headers)
    label = f"{method.upper()} {path}"
    body = _load_json_object(raw=raw, label=label)
    if status < 200 or status >= 300:
        message = str(body.get("message") or "request failed")
        detail = str(body.get("error") or "").strip()
        suffix = f" ({detail})" if detail else ""
        raise OpError(f"{label} failed: status={status} {message}{suffix}")
    return body
