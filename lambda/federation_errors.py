from __future__ import annotations


class FederationSessionError(Exception):
    """Base class for failures surfaced at the request boundary."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    public_message = "Internal server error"


class ConfigUnavailable(FederationSessionError):
    """Product catalog could not be read and nothing was cached yet."""

    error_code = "CONFIG_UNAVAILABLE"
    public_message = "Product configuration unavailable"


class ProductNotFound(FederationSessionError):
    status_code = 404
    error_code = "PRODUCT_NOT_FOUND"
    public_message = "Unknown product"


class CredentialError(FederationSessionError):
    error_code = "CREDENTIAL_ERROR"
    public_message = "Failed to obtain delegated credentials"


class SecurityError(FederationSessionError):
    """Outbound endpoint failed the allowlist check. Never retried."""

    error_code = "SECURITY_ERROR"
    public_message = "Outbound endpoint rejected"


class FederationError(FederationSessionError):
    error_code = "FEDERATION_ERROR"
    public_message = "Failed to generate federation URL"


class RevocationError(FederationSessionError):
    error_code = "REVOCATION_FAILED"
    public_message = "Failed to revoke sessions"
