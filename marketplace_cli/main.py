from __future__ import annotations

import argparse
import sys
from typing import Any

import click
import typer
from dotenv import load_dotenv
from rich.console import Console

from . import __version__
from .cli_shared import (
    MARKETPLACE_API_ENDPOINT,
    MARKETPLACE_COGNITO_CLIENT_ID,
    MARKETPLACE_COGNITO_PASSWORD,
    MARKETPLACE_COGNITO_USERNAME,
    GlobalOpts,
    OpError,
    UsageError,
    _env_or_none,
    _eprint,
)
from .commands import cmd_login, cmd_session_get, cmd_session_revoke, cmd_session_terminate

_ERROR_CONSOLE = Console(stderr=True)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


def _render_usage_error_with_help(*, message: str, ctx: click.Context | None = None) -> None:
    _rich_error(message)
    help_text = ""
    if isinstance(ctx, click.Context):
        try:
            help_text = str(ctx.get_help() or "").strip()
        except Exception:
            help_text = ""
    if help_text:
        _eprint("")
        _eprint(help_text)


def _bootstrap_env() -> None:
    # Discover and load .env without overriding already-exported values.
    load_dotenv()


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"marketplace {__version__}")
        raise typer.Exit(code=0)


app = typer.Typer(
    name="marketplace",
    help="Federated AWS Marketplace sessions.",
    no_args_is_help=True,
    add_completion=False,
)
session_app = typer.Typer(help="Federation URL lifecycle", no_args_is_help=True)
app.add_typer(session_app, name="session")


@app.callback()
def app_callback(
    ctx: typer.Context,
    endpoint: str | None = typer.Option(
        None,
        "--endpoint",
        help=f"Session API base URL (env override: {MARKETPLACE_API_ENDPOINT})",
    ),
    client_id: str | None = typer.Option(
        None,
        "--client-id",
        help=f"Cognito app client id (env override: {MARKETPLACE_COGNITO_CLIENT_ID})",
    ),
    region: str | None = typer.Option(None, "--region", help="AWS region of the user pool (env AWS_REGION)"),
    plain_json: bool = typer.Option(False, "--plain-json", help="Emit compact JSON output"),
    quiet: bool = typer.Option(False, "--quiet", help="Reduce stderr logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    ctx.obj = {
        "g": GlobalOpts(
            endpoint=(endpoint or _env_or_none(MARKETPLACE_API_ENDPOINT) or "").strip(),
            client_id=(client_id or _env_or_none(MARKETPLACE_COGNITO_CLIENT_ID) or "").strip(),
            region=(region or _env_or_none("AWS_REGION", "AWS_DEFAULT_REGION") or "").strip(),
            pretty=not plain_json,
            quiet=quiet,
        )
    }


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    root = ctx.find_root()
    obj = root.obj if isinstance(root.obj, dict) else ctx.obj
    if isinstance(obj, dict) and isinstance(obj.get("g"), GlobalOpts):
        return obj["g"]
    raise typer.Exit(code=2)


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = argparse.Namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


_USERNAME_HELP = f"Cognito username (or env {MARKETPLACE_COGNITO_USERNAME})"
_PASSWORD_HELP = f"Cognito password (or env {MARKETPLACE_COGNITO_PASSWORD})"
_ID_TOKEN_HELP = "Cognito id token (or env MARKETPLACE_ID_TOKEN); skips username/password login"
_ACCESS_TOKEN_HELP = "Cognito access token used for global sign-out (or env MARKETPLACE_ACCESS_TOKEN)"


@app.command("login", help="Authenticate against Cognito and print the token set.")
def login(
    ctx: typer.Context,
    username: str | None = typer.Option(None, "--username", help=_USERNAME_HELP),
    password: str | None = typer.Option(None, "--password", help=_PASSWORD_HELP),
) -> None:
    _invoke(ctx, cmd_login, username=username, password=password)


@session_app.command("get", help="Get (or mint) the federation URL for one product.")
def session_get(
    ctx: typer.Context,
    product: str = typer.Option("gitlab", "--product", help="Product key, e.g. gitlab, okta, wiz"),
    open_browser: bool = typer.Option(False, "--open", help="Open the federation URL in a browser"),
    id_token: str | None = typer.Option(None, "--id-token", help=_ID_TOKEN_HELP),
    username: str | None = typer.Option(None, "--username", help=_USERNAME_HELP),
    password: str | None = typer.Option(None, "--password", help=_PASSWORD_HELP),
) -> None:
    _invoke(
        ctx,
        cmd_session_get,
        product=product,
        open_browser=open_browser,
        id_token=id_token,
        username=username,
        password=password,
    )


@session_app.command("terminate", help="Drop your cached federation URLs for every product.")
def session_terminate(
    ctx: typer.Context,
    sign_out: bool = typer.Option(False, "--sign-out", help="Also sign out of Cognito globally"),
    id_token: str | None = typer.Option(None, "--id-token", help=_ID_TOKEN_HELP),
    access_token: str | None = typer.Option(None, "--access-token", help=_ACCESS_TOKEN_HELP),
    username: str | None = typer.Option(None, "--username", help=_USERNAME_HELP),
    password: str | None = typer.Option(None, "--password", help=_PASSWORD_HELP),
) -> None:
    _invoke(
        ctx,
        cmd_session_terminate,
        sign_out=sign_out,
        id_token=id_token,
        access_token=access_token,
        username=username,
        password=password,
    )


@session_app.command(
    "revoke",
    help="Revoke every marketplace role session issued before now and sign out.",
)
def session_revoke(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="Confirm the role-wide revocation"),
    id_token: str | None = typer.Option(None, "--id-token", help=_ID_TOKEN_HELP),
    access_token: str | None = typer.Option(None, "--access-token", help=_ACCESS_TOKEN_HELP),
    username: str | None = typer.Option(None, "--username", help=_USERNAME_HELP),
    password: str | None = typer.Option(None, "--password", help=_PASSWORD_HELP),
) -> None:
    _invoke(
        ctx,
        cmd_session_revoke,
        yes=yes,
        id_token=id_token,
        access_token=access_token,
        username=username,
        password=password,
    )


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    _bootstrap_env()
    try:
        result = app(args=argv, prog_name="marketplace", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        if isinstance(e, click.UsageError):
            _render_usage_error_with_help(message=e.format_message(), ctx=getattr(e, "ctx", None))
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
