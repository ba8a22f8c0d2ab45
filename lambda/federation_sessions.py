from __future__ import annotations

from dataclasses import dataclass

from credential_broker import CredentialBroker, Identity
from federation_errors import ProductNotFound
from federation_minter import FederationMinter
from product_catalog import KNOWN_PRODUCT_KEYS, is_known_product_key
from revocation import RevocationEngine, RevocationResult
from session_cache import SessionArtifact, SessionCache, StepOutcome, composite_key

DEFAULT_SAFETY_MARGIN_SECONDS = 300


@dataclass(frozen=True)
class FederationUrl:
    federation_url: str
    expires_at: int
    cached: bool = False

    def to_body(self) -> dict[str, object]:
        return {"federationUrl": self.federation_url, "expiresAt": self.expires_at}


class FederationSessionService:
    """Read-through issuance, soft termination and hard revocation for one caller."""

    def __init__(
        self,
        *,
        cache: SessionCache,
        broker: CredentialBroker,
        minter: FederationMinter,
        revocation: RevocationEngine,
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
    ) -> None:
        self.cache = cache
        self.broker = broker
        self.minter = minter
        self.revocation = revocation
        self._safety_margin_seconds = safety_margin_seconds

    def get_or_mint(self, identity: Identity, product_key: str) -> FederationUrl:
        if not is_known_product_key(product_key):
            raise ProductNotFound(f"product configuration not found for: {product_key}")

        key = composite_key(identity.sub, product_key)
        stored = self.cache.get_valid(key)
        if stored is not None:
            return FederationUrl(stored.federation_url, stored.expires_at, cached=True)

        credentials = self.broker.assume(identity)
        federation_url = self.minter.mint(credentials, product_key)

        # Artifact must expire before the credentials it fronts.
        expires_at = (
            self.cache.now_epoch() + self.broker.duration_seconds - self._safety_margin_seconds
        )
        if credentials.expiration is not None:
            expires_at = min(
                expires_at,
                int(credentials.expiration.timestamp()) - self._safety_margin_seconds,
            )
        now_iso = self.cache.now_iso()
        self.cache.put(
            SessionArtifact(
                composite_key=key,
                federation_url=federation_url,
                expires_at=expires_at,
                username=identity.username,
                product_key=product_key,
                created_at=now_iso,
                last_accessed_at=now_iso,
            )
        )
        return FederationUrl(federation_url, expires_at)

    def terminate(self, identity: Identity, access_token: str | None = None) -> list[StepOutcome]:
        steps = self.cache.invalidate_all(identity.sub, KNOWN_PRODUCT_KEYS)
        signed_out = self.revocation.sign_out(access_token)
        if signed_out is not None:
            steps.append(signed_out)
        return steps

    def revoke(self, identity: Identity, access_token: str | None = None) -> RevocationResult:
        return self.revocation.revoke_all(identity, access_token)
