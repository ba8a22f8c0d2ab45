import json
import os
import time
from typing import Any

import aws_clients
from credential_broker import CredentialBroker, Identity
from federation_errors import FederationSessionError
from federation_minter import DEFAULT_ISSUER, FederationMinter
from federation_sessions import FederationSessionService
from product_catalog import CatalogResolver
from revocation import RevocationEngine
from session_cache import SessionCache
from wide_log import emit, now_iso

_service = None

MARKETPLACE_ROLE_ARN = os.environ.get("MARKETPLACE_ROLE_ARN", "")
PRESIGNED_URLS_TABLE = os.environ.get("PRESIGNED_URLS_TABLE", "")
CONFIG_BUCKET = os.environ.get("CONFIG_BUCKET", "")
CONFIG_KEY = os.environ.get("CONFIG_KEY", "")
ISSUER = os.environ.get("ISSUER", DEFAULT_ISSUER)
SESSION_DURATION_SECONDS = int(os.environ.get("SESSION_DURATION_SECONDS", "3600"))
SESSION_SAFETY_MARGIN_SECONDS = int(os.environ.get("SESSION_SAFETY_MARGIN_SECONDS", "300"))
CATALOG_CACHE_TTL_SECONDS = int(os.environ.get("CATALOG_CACHE_TTL_SECONDS", "300"))
REVOCATION_PROPAGATION_SECONDS = float(os.environ.get("REVOCATION_PROPAGATION_SECONDS", "1"))
FEDERATION_TIMEOUT_SECONDS = int(os.environ.get("FEDERATION_TIMEOUT_SECONDS", "10"))
DEFAULT_PRODUCT_KEY = os.environ.get("DEFAULT_PRODUCT_KEY", "gitlab")
SESSION_PATH = os.environ.get("SESSION_PATH", "/marketplace-url")
REVOKE_PATH = os.environ.get("REVOKE_PATH", "/marketplace-url/revoke")
CORS_ALLOW_ORIGIN = os.environ.get("CORS_ALLOW_ORIGIN", "*")
SCHEMA_VERSION = os.environ.get("SCHEMA_VERSION", "2026-10-01")
ACCESS_TOKEN_HEADER = "x-marketplace-access-token"


def _headers() -> dict[str, str]:
    return {
        "content-type": "application/json",
        "cache-control": "no-store",
        "Access-Control-Allow-Origin": CORS_ALLOW_ORIGIN,
        "Access-Control-Allow-Methods": "GET,POST,DELETE,OPTIONS",
        "Access-Control-Allow-Headers": (
            "Content-Type,Authorization,X-Amz-Date,X-Api-Key,X-Amz-Security-Token,"
            "X-Marketplace-Access-Token"
        ),
    }


def _response(status_code: int, body: dict[str, Any] | None) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": _headers(),
        "body": "" if body is None else json.dumps(body),
    }


def _error_body(message: str, request_id: str, *, error_code: str, error: str = "") -> dict[str, Any]:
    body: dict[str, Any] = {"message": message, "errorCode": error_code, "requestId": request_id}
    if error:
        body["error"] = error
    return body


def _get_header(event: dict[str, Any], name: str) -> str:
    headers = event.get("headers") or {}
    if not isinstance(headers, dict):
        return ""
    # API Gateway can canonicalize headers; treat them case-insensitively.
    for k, v in headers.items():
        if isinstance(k, str) and k.lower() == name.lower():
            return str(v) if v is not None else ""
    return ""


def _request_id(event: dict[str, Any]) -> str:
    return str((event.get("requestContext") or {}).get("requestId") or "")


def _claims(event: dict[str, Any]) -> dict[str, Any]:
    rc = event.get("requestContext") or {}
    if not isinstance(rc, dict):
        return {}
    auth = rc.get("authorizer") or {}
    if not isinstance(auth, dict):
        return {}
    claims = auth.get("claims")
    if isinstance(claims, dict):
        return claims
    jwt_claims = (auth.get("jwt") or {}).get("claims")
    if isinstance(jwt_claims, dict):
        return jwt_claims
    return {}


def _identity(event: dict[str, Any]) -> Identity | None:
    claims = _claims(event)
    sub = str(claims.get("sub") or "").strip()
    username = str(claims.get("cognito:username") or claims.get("username") or "").strip()
    if not sub or not username:
        return None
    return Identity(sub=sub, username=username)


def _access_token(event: dict[str, Any]) -> str:
    # Authorization carries the ID token for the user-pool authorizer; sign-out
    # needs the access token and only happens when the caller opts in.
    return _get_header(event, ACCESS_TOKEN_HEADER).strip()


def _method(event: dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = ((event.get("requestContext") or {}).get("http") or {}).get("method")
    return str(method or "").upper()


def _request_matches_path(event: dict[str, Any], expected_path: str) -> bool:
    expected = str(expected_path or "").strip().rstrip("/")
    if not expected:
        return False
    rc = event.get("requestContext") or {}
    candidates = [
        event.get("rawPath"),
        event.get("path"),
        event.get("resource"),
        rc.get("resourcePath") if isinstance(rc, dict) else None,
    ]
    for raw in candidates:
        candidate = str(raw or "").strip().rstrip("/")
        if candidate and (candidate == expected or candidate.endswith(expected)):
            return True
    return False


def _product_key(event: dict[str, Any]) -> str:
    params = event.get("queryStringParameters") or {}
    if not isinstance(params, dict):
        params = {}
    return str(params.get("product") or "").strip().lower() or DEFAULT_PRODUCT_KEY


def build_service() -> FederationSessionService:
    cache = SessionCache(aws_clients.client("dynamodb"), table_name=PRESIGNED_URLS_TABLE)
    catalog = CatalogResolver(
        aws_clients.client("s3"),
        bucket=CONFIG_BUCKET,
        key=CONFIG_KEY,
        ttl_seconds=CATALOG_CACHE_TTL_SECONDS,
    )
    return FederationSessionService(
        cache=cache,
        broker=CredentialBroker(
            aws_clients.client("sts"),
            role_arn=MARKETPLACE_ROLE_ARN,
            duration_seconds=SESSION_DURATION_SECONDS,
        ),
        minter=FederationMinter(catalog, issuer=ISSUER, timeout_seconds=FEDERATION_TIMEOUT_SECONDS),
        revocation=RevocationEngine(
            aws_clients.client("iam"),
            aws_clients.client("cognito-idp"),
            cache,
            role_arn=MARKETPLACE_ROLE_ARN,
            propagation_seconds=REVOCATION_PROPAGATION_SECONDS,
        ),
        safety_margin_seconds=SESSION_SAFETY_MARGIN_SECONDS,
    )


def _get_service() -> FederationSessionService:
    global _service
    if _service is None:
        _service = build_service()
    return _service


def _misconfigured() -> list[str]:
    required = {
        "MARKETPLACE_ROLE_ARN": MARKETPLACE_ROLE_ARN,
        "PRESIGNED_URLS_TABLE": PRESIGNED_URLS_TABLE,
        "CONFIG_BUCKET": CONFIG_BUCKET,
        "CONFIG_KEY": CONFIG_KEY,
    }
    return sorted(name for name, value in required.items() if not str(value or "").strip())


def route_request(
    event: dict[str, Any],
    service: FederationSessionService,
    wide_event: dict[str, Any],
) -> dict[str, Any]:
    request_id = _request_id(event)
    method = _method(event)

    identity = _identity(event)
    if identity is None:
        wide_event["outcome"] = "unauthorized"
        return _response(
            401,
            _error_body(
                "Unauthorized: Missing user information",
                request_id,
                error_code="UNAUTHORIZED",
            ),
        )
    wide_event["principal"] = {"sub": identity.sub, "username": identity.username}

    if method == "GET" and _request_matches_path(event, SESSION_PATH):
        product_key = _product_key(event)
        wide_event["operation"] = "get_federation_url"
        wide_event["product"] = product_key
        issued = service.get_or_mint(identity, product_key)
        wide_event["cache_hit"] = issued.cached
        wide_event["outcome"] = "success"
        return _response(200, issued.to_body())

    if method == "POST" and _request_matches_path(event, REVOKE_PATH):
        wide_event["operation"] = "revoke_sessions"
        result = service.revoke(identity, _access_token(event) or None)
        wide_event["failed_steps"] = [s.step for s in result.steps if not s.ok]
        wide_event["outcome"] = "success"
        return _response(
            200,
            {"message": "All sessions revoked successfully", "revokedAt": result.revoked_at},
        )

    if method == "DELETE" and _request_matches_path(event, SESSION_PATH):
        wide_event["operation"] = "terminate_sessions"
        steps = service.terminate(identity, _access_token(event) or None)
        wide_event["failed_steps"] = [s.step for s in steps if not s.ok]
        wide_event["outcome"] = "success"
        return _response(200, {"message": "Session terminated successfully"})

    wide_event["outcome"] = "method_not_allowed"
    return _response(405, _error_body("Method not allowed", request_id, error_code="METHOD_NOT_ALLOWED"))


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    request_id = _request_id(event)

    wide_event: dict[str, Any] = {
        "event": "marketplace_federation_session",
        "schema_version": SCHEMA_VERSION,
        "request_id": request_id,
        "ts": now_iso(),
        "method": _method(event),
    }

    status_code = 500
    try:
        if _method(event) == "OPTIONS":
            wide_event["operation"] = "preflight"
            wide_event["outcome"] = "success"
            out = _response(200, None)
            status_code = out["statusCode"]
            return out

        missing = _misconfigured()
        if missing:
            wide_event["outcome"] = "error"
            wide_event["missing_config"] = missing
            out = _response(
                500,
                _error_body("Server misconfigured", request_id, error_code="MISCONFIGURED"),
            )
        else:
            out = route_request(event, _get_service(), wide_event)
        status_code = out["statusCode"]
        return out
    except FederationSessionError as exc:
        status_code = exc.status_code
        wide_event["outcome"] = "error"
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
        return _response(
            status_code,
            _error_body(exc.public_message, request_id, error_code=exc.error_code, error=str(exc)),
        )
    except Exception as exc:
        status_code = 500
        wide_event["outcome"] = "error"
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
        return _response(
            500,
            _error_body("Internal server error", request_id, error_code="INTERNAL_ERROR", error=str(exc)),
        )
    finally:
        wide_event["status_code"] = status_code
        wide_event["duration_ms"] = int((time.time() - start) * 1000)
        # Never log credential material or federation URLs.
        emit(wide_event)
