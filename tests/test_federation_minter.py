import json
from http.client import IncompleteRead
from urllib.error import URLError
from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import FakeSigner
from credential_broker import DelegatedCredentials
from federation_errors import FederationError, ProductNotFound, SecurityError
from federation_minter import FederationMinter, session_descriptor
from product_catalog import CatalogResolver

CREDS = DelegatedCredentials(access_key_id="ASIA1", secret_access_key="secret", session_token="token")


def _minter(s3, clock, signer, **kwargs):
    catalog = CatalogResolver(s3, bucket="config-bucket", key="products.json", clock=clock)
    return FederationMinter(catalog, post_form=signer, **kwargs)


def test_mint_builds_login_url_with_deep_link(s3, clock):
    signer = FakeSigner()
    signer.body = json.dumps({"SigninToken": "abc"}).encode("utf-8")

    url = _minter(s3, clock, signer).mint(CREDS, "gitlab")

    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://signin.aws.amazon.com/federation"
    query = parse_qs(parts.query)
    assert query == {
        "Action": ["login"],
        "Destination": ["https://aws.amazon.com/marketplace/pp/prodview-1"],
        "SigninToken": ["abc"],
        "Issuer": ["YourApplication"],
    }
    assert url.count("SigninToken=abc") == 1
    assert url.count("Issuer=YourApplication") == 1


def test_signing_request_carries_session_descriptor(s3, clock):
    signer = FakeSigner()
    _minter(s3, clock, signer, issuer="PortalApp", timeout_seconds=4).mint(CREDS, "okta")

    call = signer.calls[0]
    assert call["url"] == "https://signin.aws.amazon.com/federation"
    assert call["timeout_seconds"] == 4
    assert call["fields"]["Action"] == "getSigninToken"
    assert json.loads(call["fields"]["Session"]) == {
        "sessionId": "ASIA1",
        "sessionKey": "secret",
        "sessionToken": "token",
    }
    assert json.loads(session_descriptor(CREDS))["sessionId"] == "ASIA1"


def test_unknown_product_fails_before_signing(s3, clock):
    signer = FakeSigner()
    with pytest.raises(ProductNotFound):
        _minter(s3, clock, signer).mint(CREDS, "wiz")
    assert signer.calls == []


def test_disallowed_endpoint_is_a_security_error(s3, clock):
    signer = FakeSigner()
    minter = _minter(s3, clock, signer, endpoint="http://signin.aws.amazon.com/federation")
    with pytest.raises(SecurityError):
        minter.mint(CREDS, "gitlab")
    assert signer.calls == []


@pytest.mark.parametrize(
    ("status", "body", "match"),
    [
        (500, b"upstream", "status=500"),
        (200, b"<html>", "Invalid federation response"),
        (200, b"{}", "No signin token received"),
        (200, b'{"SignedToken": "abc"}', "No signin token received"),
    ],
)
def test_bad_signing_responses_are_federation_errors(s3, clock, status, body, match):
    signer = FakeSigner()
    signer.status = status
    signer.body = body
    with pytest.raises(FederationError, match=match):
        _minter(s3, clock, signer).mint(CREDS, "gitlab")


def test_transport_failure_is_a_federation_error(s3, clock):
    def unreachable(**kwargs):
        raise URLError("timed out")

    catalog = CatalogResolver(s3, bucket="config-bucket", key="products.json", clock=clock)
    with pytest.raises(FederationError, match="Federation request failed"):
        FederationMinter(catalog, post_form=unreachable).mint(CREDS, "gitlab")


def test_truncated_signing_response_is_a_federation_error(s3, clock):
    def truncated(**kwargs):
        raise IncompleteRead(b'{"SigninT', 40)

    catalog = CatalogResolver(s3, bucket="config-bucket", key="products.json", clock=clock)
    with pytest.raises(FederationError, match="Federation request failed") as exc:
        FederationMinter(catalog, post_form=truncated).mint(CREDS, "gitlab")
    assert exc.value.error_code == "FEDERATION_ERROR"
