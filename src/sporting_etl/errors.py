from __future__ import annotations


class ProviderError(RuntimeError):
    """Base exception for upstream data provider failures."""


class ProviderRequestError(ProviderError):
    """Transport failures and non-2xx responses."""


class RateLimitedError(ProviderRequestError):
    """Provider throttled the request (HTTP 429)."""


class ProviderResponseError(ProviderError):
    """Response was not JSON or did not have the expected shape."""


class ConfigurationError(RuntimeError):
    """Configuration cannot be resolved (e.g. no credentials for a source)."""


class BackfillHalted(RuntimeError):
    """Raised deliberately after a completed run when halt_on_complete is set."""
