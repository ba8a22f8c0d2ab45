from __future__ import annotations

import os
from typing import Any

import boto3
from botocore.config import Config

AWS_CONNECT_TIMEOUT_SECONDS = int(os.environ.get("AWS_CONNECT_TIMEOUT_SECONDS", "5"))
AWS_READ_TIMEOUT_SECONDS = int(os.environ.get("AWS_READ_TIMEOUT_SECONDS", "10"))
AWS_MAX_ATTEMPTS = int(os.environ.get("AWS_MAX_ATTEMPTS", "3"))


def aws_region() -> str | None:
    return os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")


def client_config() -> Config:
    # Single retry/timeout policy for every AWS call made by the session API.
    return Config(
        connect_timeout=AWS_CONNECT_TIMEOUT_SECONDS,
        read_timeout=AWS_READ_TIMEOUT_SECONDS,
        retries={"mode": "standard", "max_attempts": max(1, AWS_MAX_ATTEMPTS)},
    )


def client(service_name: str) -> Any:
    return boto3.client(service_name, region_name=aws_region(), config=client_config())
