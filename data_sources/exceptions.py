"""
Data Source Exceptions - Provider-level failure classification.

Every provider failure is a ProviderUnavailable; the gateway treats them
identically and moves on to the next tier. Only DataUnavailable escapes
the gateway.
"""

from typing import Any, Dict, Optional

from core.exceptions import DataUnavailable, ProviderUnavailable


class FetchError(ProviderUnavailable):
    """HTTP or connection error while calling a provider."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        tier: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, source_name=source_name, tier=tier, **kwargs)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data

    def is_server_error(self) -> bool:
        return self.status_code is not None and 500 <= self.status_code < 600


class RateLimitError(FetchError):
    """Provider answered HTTP 429."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        tier: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, source_name=source_name, tier=tier, status_code=429, **kwargs)
        self.retry_after_seconds = retry_after_seconds


class ProviderTimeoutError(ProviderUnavailable):
    """Provider did not answer within its declared timeout."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        tier: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, source_name=source_name, tier=tier, **kwargs)
        self.timeout_seconds = timeout_seconds


class NormalizationError(ProviderUnavailable):
    """Provider payload was malformed."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        tier: Optional[str] = None,
        raw_data: Optional[Any] = None,
        field_name: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, source_name=source_name, tier=tier, **kwargs)
        self.raw_data = str(raw_data)[:500] if raw_data is not None else None
        self.field_name = field_name


__all__ = [
    "ProviderUnavailable",
    "DataUnavailable",
    "FetchError",
    "RateLimitError",
    "ProviderTimeoutError",
    "NormalizationError",
]
