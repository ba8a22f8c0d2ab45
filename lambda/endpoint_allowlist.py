from __future__ import annotations

from urllib.parse import urlparse

AWS_FEDERATION_ENDPOINT = "https://signin.aws.amazon.com/federation"

# Outbound HTTP is only ever sent to these literal URLs (SSRF guard, CWE-918).
ALLOWED_ENDPOINTS = frozenset({AWS_FEDERATION_ENDPOINT})


def is_allowed(url: str) -> bool:
    if not isinstance(url, str) or not url:
        return False
    try:
        parsed = urlparse(url)
    except Exception:
        return False
    if parsed.scheme != "https" or not parsed.netloc:
        return False
    return url in ALLOWED_ENDPOINTS
