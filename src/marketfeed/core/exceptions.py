"""Custom exception hierarchy for marketfeed."""

from typing import Any


class MarketFeedError(Exception):
    """Base exception for all marketfeed errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(MarketFeedError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field (str): the config field that failed validation
        value (Any): the invalid value
    """


class ValidationError(MarketFeedError):
    """Malformed caller input (missing ids, unsupported currency, ...).

    Policy: surface as a request-level 400. Never raised for upstream data.

    Context keys:
        field (str): the offending parameter
    """


class UpstreamError(MarketFeedError):
    """A data provider failed to deliver usable data.

    Policy: catch at the provider-client boundary and convert into a per-id
    error. Never abort sibling symbols in the same batch.

    Context keys:
        provider (str): "coingecko", "yahoo", "binance", "exchangerate"
        url (str): the URL that was being fetched
    """


class HttpError(UpstreamError):
    """Non-2xx response, or an HTML error page disguised as a 200.

    Context keys:
        status (int): HTTP status code
        url: str | None
    """

    def __init__(
        self,
        message: str,
        status: int,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context={"status": status, **(context or {})})
        self.status = status


class ParseError(HttpError):
    """Response body was malformed or did not match the expected shape.

    Context keys:
        reason (str): what did not match
    """


class FetchTimeoutError(UpstreamError):
    """A single attempt exceeded its deadline.

    Policy: not retried. Bounds the worst-case latency of a request.

    Context keys:
        timeout (float): the deadline in seconds
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context={"timeout": timeout, **(context or {})})
        self.timeout = timeout


class TransportError(UpstreamError):
    """Connection-level failure that persisted through every retry."""


class ProviderUnavailable(UpstreamError):
    """Every fallback step for a provider was exhausted, or the provider
    answered with an authentication/server failure (401/403/5xx).

    Context keys:
        status (int | None): the last HTTP status seen
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context={"status": status, **(context or {})})
        self.status = status


class NotFound(UpstreamError):
    """The provider affirmatively has no data for the instrument."""
