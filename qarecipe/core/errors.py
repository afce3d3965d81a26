"""Error taxonomy for the webhook-to-comment pipeline."""


class QARecipeError(Exception):
    """Base class for all qarecipe errors."""


class AuthenticationError(QARecipeError):
    """Webhook signature or token failed verification."""


class MalformedPayloadError(QARecipeError):
    """Webhook payload is missing required structure."""


class UpstreamAnalysisError(QARecipeError):
    """A reasoning strategy failed or returned an unusable response."""


class NormalizationError(QARecipeError):
    pass


class PostError(QARecipeError):
    """Posting the rendered comment back to the platform failed."""


class CursorConflictError(QARecipeError):
    """A compare-and-set on a revision cursor lost a race."""

    def __init__(self, target: str, expected: str | None, actual: str | None):
        super().__init__(
            f"Cursor for {target} changed concurrently (expected {expected!r}, found {actual!r})"
        )
        self.target = target
        self.expected = expected
        self.actual = actual


class PlatformAPIError(QARecipeError):
    """Non-2xx response from a platform REST/GraphQL API."""

    def __init__(self, status: int, body: str = "", url: str = ""):
        super().__init__(f"Platform API error {status} for {url}: {body[:300]}")
        self.status = status
        self.body = body
        self.url = url
