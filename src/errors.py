"""Error taxonomy. Each error knows its machine code and HTTP status."""


class FortuneError(Exception):
    """Base for every failure the router maps to an error response."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_payload(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(FortuneError):
    code = "validation_error"
    status_code = 400


class AuthorizationError(FortuneError):
    code = "unauthorized"
    status_code = 401


class NotFound(FortuneError):
    code = "not_found"
    status_code = 404


class MethodNotAllowed(FortuneError):
    code = "method_not_allowed"
    status_code = 405


class RateLimitExceeded(FortuneError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, client_key: str, limit: int) -> None:
        self.client_key = client_key
        self.limit = limit
        super().__init__("Rate limit exceeded. Please try again in a minute.")


class ConfigurationError(FortuneError):
    code = "configuration_error"
    status_code = 500


class UpstreamError(FortuneError):
    """Raised when the completion service fails or answers with an error status."""

    code = "upstream_error"
    status_code = 502

    def __init__(self, upstream_status: int, raw_body: str, message: str | None = None) -> None:
        self.upstream_status = upstream_status
        self.raw_body = raw_body
        super().__init__(message or f"Upstream API error ({upstream_status}): {raw_body}")

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["upstreamStatus"] = self.upstream_status
        return payload


class MalformedResponseError(UpstreamError):
    """Upstream answered 2xx but without the expected completion content."""

    code = "upstream_malformed"

    def __init__(self, raw_body: str) -> None:
        super().__init__(502, raw_body, f"Upstream response missing completion content: {raw_body}")


class CouncilError(UpstreamError):
    """A persona's call failed; the whole council is abandoned."""

    code = "council_failed"

    def __init__(self, persona_id: str, display_name: str, cause: UpstreamError) -> None:
        self.persona_id = persona_id
        self.display_name = display_name
        self.cause = cause
        super().__init__(
            cause.upstream_status,
            cause.raw_body,
            f"Council member {display_name} failed: {cause.message}",
        )

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["persona"] = self.persona_id
        return payload
