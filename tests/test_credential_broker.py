from datetime import datetime, timezone

import pytest

from conftest import Clock, FakeSts
from credential_broker import CredentialBroker, DelegatedCredentials, Identity, role_session_name
from federation_errors import CredentialError

ROLE_ARN = "arn:aws:iam::123456789012:role/MarketplaceFederation"


def test_assume_passes_identity_tags_and_duration():
    sts = FakeSts()
    broker = CredentialBroker(sts, role_arn=ROLE_ARN, duration_seconds=3600, clock=Clock(1_790_000_000.5))

    creds = broker.assume(Identity(sub="sub-1", username="alice"))

    assert creds.access_key_id == "ASIA0001"
    assert creds.session_token == "token-1"
    call = sts.calls[0]
    assert call["RoleArn"] == ROLE_ARN
    assert call["DurationSeconds"] == 3600
    assert call["RoleSessionName"] == "marketplace-alice-1790000000500"
    assert call["Tags"] == [
        {"Key": "userId", "Value": "sub-1"},
        {"Key": "username", "Value": "alice"},
    ]


def test_role_session_name_is_sanitized_and_bounded():
    name = role_session_name("alice smith!" + "x" * 80, 1)
    assert name.startswith("marketplace-alicesmith")
    assert len(name) == 64
    assert " " not in name and "!" not in name


def test_sts_failure_is_wrapped_as_credential_error():
    sts = FakeSts()
    sts.error = RuntimeError("AccessDenied")
    broker = CredentialBroker(sts, role_arn=ROLE_ARN)
    with pytest.raises(CredentialError, match="AccessDenied") as exc:
        broker.assume(Identity(sub="sub-1", username="alice"))
    assert exc.value.error_code == "CREDENTIAL_ERROR"


def test_missing_credential_fields_are_rejected():
    class EmptySts:
        def assume_role(self, **kwargs):
            return {"Credentials": {"AccessKeyId": "ASIA", "SecretAccessKey": ""}}

    broker = CredentialBroker(EmptySts(), role_arn=ROLE_ARN)
    with pytest.raises(CredentialError, match="Failed to obtain credentials"):
        broker.assume(Identity(sub="sub-1", username="alice"))


def test_credentials_repr_hides_secret_material():
    creds = DelegatedCredentials(access_key_id="ASIA", secret_access_key="s3cr3t", session_token="tok3n")
    text = repr(creds)
    assert "ASIA" in text
    assert "s3cr3t" not in text
    assert "tok3n" not in text


def test_sts_expiration_is_carried_on_credentials():
    sts = FakeSts()
    sts.expiration = datetime(2026, 10, 16, 13, 0, tzinfo=timezone.utc)
    broker = CredentialBroker(sts, role_arn=ROLE_ARN)

    creds = broker.assume(Identity(sub="sub-1", username="alice"))

    assert creds.expiration == datetime(2026, 10, 16, 13, 0, tzinfo=timezone.utc)
    assert CredentialBroker(FakeSts(), role_arn=ROLE_ARN).assume(Identity("s", "u")).expiration is None
