from __future__ import annotations


class ReviewflowError(Exception):
    """Base error for Reviewflow."""

    code = "INTERNAL_ERROR"


class ConfigError(ReviewflowError):
    """A required credential or secret is not configured."""

    code = "CONFIG_ERROR"

    def __init__(self, message: str, *, missing: dict[str, bool] | None = None) -> None:
        super().__init__(message)
        # One flag per dependency that is missing.
        self.missing = dict(missing or {})


class AuthError(ReviewflowError):
    """Tenant credential rejected or expired at the external provider."""

    code = "AUTH_ERROR"


class ProviderError(ReviewflowError):
    """Upstream review provider failure."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationError(ReviewflowError):
    """Drafting provider unavailable, over quota, or returned an unusable reply."""

    code = "GENERATION_ERROR"


class StoreError(ReviewflowError):
    """Persistence layer failure."""

    code = "STORE_ERROR"


class WebhookSignatureError(ReviewflowError):
    """Webhook payload could not be authenticated."""

    code = "WEBHOOK_SIGNATURE_INVALID"


def require_settings(**values: object) -> None:
    # Raise a single ConfigError flagging every empty value.
    missing = {name: True for name, value in values.items() if not value}
    if missing:
        raise ConfigError(
            f"Missing configuration: set {', '.join(name.upper() for name in missing)}.",
            missing=missing,
        )
