class QuoteSourceError(Exception):
    """Upstream quote/news failure that callers convert into an error value."""

    kind = "UPSTREAM_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MissingCredentialError(QuoteSourceError):
    kind = "MISSING_CREDENTIAL"


class InvalidCredentialError(QuoteSourceError):
    kind = "INVALID_CREDENTIAL"


class RateLimitError(QuoteSourceError):
    kind = "RATE_LIMITED"


class UpstreamHttpError(QuoteSourceError):
    kind = "HTTP_ERROR"


class TransportError(QuoteSourceError):
    kind = "TRANSPORT_ERROR"
