from __future__ import annotations

import argparse
import webbrowser
from dataclasses import dataclass
from typing import Any

import boto3

from . import api_client
from .cli_shared import (
    MARKETPLACE_ACCESS_TOKEN,
    MARKETPLACE_COGNITO_PASSWORD,
    MARKETPLACE_COGNITO_USERNAME,
    MARKETPLACE_ID_TOKEN,
    GlobalOpts,
    OpError,
    UsageError,
    _env_or_none,
    _eprint,
    _jwt_payload,
    _print_json,
    _require_str,
)


@dataclass(frozen=True)
class SessionTokens:
    id_token: str
    access_token: str


def _cognito_client(g: GlobalOpts) -> Any:
    region = _require_str(g.region, "region", hint="--region or env AWS_REGION")
    return boto3.client("cognito-idp", region_name=region)


def _authenticate(g: GlobalOpts, *, username: str | None, password: str | None) -> dict[str, Any]:
    client_id = _require_str(
        g.client_id, "client id", hint="--client-id or env MARKETPLACE_COGNITO_CLIENT_ID"
    )
    resolved_username = _require_str(
        username or _env_or_none(MARKETPLACE_COGNITO_USERNAME),
        "username",
        hint=f"--username or env {MARKETPLACE_COGNITO_USERNAME}",
    )
    resolved_password = _require_str(
        password or _env_or_none(MARKETPLACE_COGNITO_PASSWORD),
        "password",
        hint=f"--password or env {MARKETPLACE_COGNITO_PASSWORD}",
    )
    try:
        resp = _cognito_client(g).initiate_auth(
            ClientId=client_id,
            AuthFlow="USER_PASSWORD_AUTH",
            AuthParameters={"USERNAME": resolved_username, "PASSWORD": resolved_password},
        )
    except UsageError:
        raise
    except Exception as e:
        raise OpError(f"cognito authentication failed: {e}") from e
    result = resp.get("AuthenticationResult") or {}
    if not result.get("IdToken"):
        raise OpError("cognito authentication did not return an id token")
    return result


def _resolve_tokens(args: argparse.Namespace, g: GlobalOpts) -> SessionTokens:
    id_token = (getattr(args, "id_token", None) or _env_or_none(MARKETPLACE_ID_TOKEN) or "").strip()
    access_token = (
        getattr(args, "access_token", None) or _env_or_none(MARKETPLACE_ACCESS_TOKEN) or ""
    ).strip()
    if id_token:
        return SessionTokens(id_token=id_token, access_token=access_token)
    result = _authenticate(
        g,
        username=getattr(args, "username", None),
        password=getattr(args, "password", None),
    )
    return SessionTokens(
        id_token=str(result.get("IdToken") or ""),
        access_token=access_token or str(result.get("AccessToken") or ""),
    )


def _endpoint(g: GlobalOpts) -> str:
    return _require_str(g.endpoint, "endpoint", hint="--endpoint or env MARKETPLACE_API_ENDPOINT")


def cmd_login(args: argparse.Namespace, g: GlobalOpts) -> int:
    result = _authenticate(g, username=args.username, password=args.password)
    claims = _jwt_payload(str(result.get("IdToken") or ""))
    _print_json(
        {
            "sub": claims.get("sub"),
            "username": claims.get("cognito:username"),
            "idToken": result.get("IdToken"),
            "accessToken": result.get("AccessToken"),
            "expiresIn": result.get("ExpiresIn"),
        },
        pretty=g.pretty,
    )
    return 0


def cmd_session_get(args: argparse.Namespace, g: GlobalOpts) -> int:
    endpoint = _endpoint(g)
    tokens = _resolve_tokens(args, g)
    out = api_client.session_api_request(
        method="GET",
        endpoint=endpoint,
        path=api_client.SESSION_PATH,
        id_token=tokens.id_token,
        query={"product": args.product},
    )
    url = str(out.get("federationUrl") or "")
    if not url:
        raise OpError("session response did not include federationUrl")
    if args.open_browser:
        if not g.quiet:
            _eprint(f"opening federation URL for {args.product}")
        webbrowser.open(url)
    _print_json(out, pretty=g.pretty)
    return 0


def cmd_session_terminate(args: argparse.Namespace, g: GlobalOpts) -> int:
    endpoint = _endpoint(g)
    tokens = _resolve_tokens(args, g)
    out = api_client.session_api_request(
        method="DELETE",
        endpoint=endpoint,
        path=api_client.SESSION_PATH,
        id_token=tokens.id_token,
        access_token=tokens.access_token if args.sign_out else "",
    )
    _print_json(out, pretty=g.pretty)
    return 0


def cmd_session_revoke(args: argparse.Namespace, g: GlobalOpts) -> int:
    if not args.yes:
        raise UsageError(
            "revocation denies every session issued under the marketplace role before now, "
            "for all users; pass --yes to confirm"
        )
    endpoint = _endpoint(g)
    tokens = _resolve_tokens(args, g)
    out = api_client.session_api_request(
        method="POST",
        endpoint=endpoint,
        path=api_client.REVOKE_PATH,
        id_token=tokens.id_token,
        access_token=tokens.access_token,
    )
    _print_json(out, pretty=g.pretty)
    return 0
