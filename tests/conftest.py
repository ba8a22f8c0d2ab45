import copy
import io
import json
import sys
from pathlib import Path

import pytest

_LAMBDA_DIR = str(Path(__file__).resolve().parents[1] / "lambda")
if _LAMBDA_DIR not in sys.path:
    sys.path.insert(0, _LAMBDA_DIR)


CATALOG_DOC = {
    "products": {
        "gitlab": {"id": "prodview-1", "name": "GitLab", "vendor": "GitLab"},
        "okta": {"id": "prodview-okta", "name": "Okta", "vendor": "Okta"},
    }
}


class ConditionalCheckFailedException(Exception):
    pass


class FakeDynamo:
    """Low-level DynamoDB client over a dict keyed by the userId string."""

    def __init__(self):
        self.items: dict[str, dict] = {}
        self.fail_delete_keys: set[str] = set()
        self.calls: list[tuple[str, dict]] = []

    def get_item(self, **kwargs):
        self.calls.append(("get_item", kwargs))
        key = kwargs["Key"]["userId"]["S"]
        item = self.items.get(key)
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def put_item(self, **kwargs):
        self.calls.append(("put_item", kwargs))
        item = copy.deepcopy(kwargs["Item"])
        self.items[item["userId"]["S"]] = item
        return {}

    def delete_item(self, **kwargs):
        self.calls.append(("delete_item", kwargs))
        key = kwargs["Key"]["userId"]["S"]
        if key in self.fail_delete_keys:
            raise RuntimeError(f"throttled deleting {key}")
        self.items.pop(key, None)
        return {}

    def update_item(self, **kwargs):
        self.calls.append(("update_item", kwargs))
        key = kwargs["Key"]["userId"]["S"]
        if key not in self.items:
            raise ConditionalCheckFailedException("The conditional request failed")
        accessed = kwargs["ExpressionAttributeValues"][":accessed"]
        self.items[key]["lastAccessed"] = dict(accessed)
        return {}

    def count(self, name: str) -> int:
        return sum(1 for op, _ in self.calls if op == name)


class FakeS3:
    def __init__(self, doc=None):
        self.doc = CATALOG_DOC if doc is None else doc
        self.fail = False
        self.reads = 0

    def get_object(self, **kwargs):
        self.reads += 1
        if self.fail:
            raise RuntimeError("AccessDenied")
        raw = self.doc if isinstance(self.doc, bytes) else json.dumps(self.doc).encode("utf-8")
        return {"Body": io.BytesIO(raw)}


class FakeSts:
    def __init__(self):
        self.calls: list[dict] = []
        self.error: Exception | None = None
        self.expiration = None

    def assume_role(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        n = len(self.calls)
        creds = {
            "AccessKeyId": f"ASIA{n:04d}",
            "SecretAccessKey": f"secret-{n}",
            "SessionToken": f"token-{n}",
        }
        if self.expiration is not None:
            creds["Expiration"] = self.expiration
        return {"Credentials": creds}


class FakeIam:
    def __init__(self):
        self.calls: list[dict] = []
        self.error: Exception | None = None

    def put_role_policy(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {}


class FakeCognito:
    def __init__(self):
        self.sign_outs: list[str] = []
        self.error: Exception | None = None

    def global_sign_out(self, **kwargs):
        self.sign_outs.append(kwargs["AccessToken"])
        if self.error is not None:
            raise self.error
        return {}


class FakeSigner:
    """Stands in for the form POST to the federation endpoint."""

    def __init__(self):
        self.calls: list[dict] = []
        self.status = 200
        self.body: bytes | None = None

    def __call__(self, *, url, fields, timeout_seconds):
        self.calls.append({"url": url, "fields": fields, "timeout_seconds": timeout_seconds})
        if self.body is not None:
            return self.status, self.body
        return self.status, json.dumps({"SigninToken": f"signin-{len(self.calls)}"}).encode("utf-8")


class Clock:
    def __init__(self, now: float = 1_790_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def ddb():
    return FakeDynamo()


@pytest.fixture
def s3():
    return FakeS3()


@pytest.fixture
def clock():
    return Clock()
