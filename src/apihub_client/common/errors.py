"""Error taxonomy shared by the transport, classifier and dispatcher."""
from __future__ import annotations


class ApiHubError(Exception):
    """Base class for every error this client raises on purpose."""


class ConfigurationError(ApiHubError):
    """Credentials or settings are missing or unusable. Raised before any network call."""


class TransportError(ApiHubError):
    """HTTP call to the gateway failed, after retries where the failure was transient."""

    def __init__(
        self,
        message: str,
        attempts: int,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(f"{message} (after {attempts} attempt{'s' if attempts != 1 else ''})")
        self.attempts = attempts
        self.status_code = status_code
        self.body = body


class GatewayError(ApiHubError):
    """The gateway answered 2xx but reported an application-level error in the body."""

    def __init__(self, code: int, message: str | None = None) -> None:
        self.code = code
        self.message = message or f"API error: {code}"
        super().__init__(self.message)


class MediaDownloadError(ApiHubError):
    """The gateway call worked but retrieving the referenced media asset did not."""

    def __init__(self, url: str, status_code: int | None, media_type: str = "media") -> None:
        self.url = url
        self.status_code = status_code
        self.media_type = media_type
        reason = status_code if status_code is not None else "network error"
        super().__init__(f"Failed to download {media_type} from {url}: {reason}")
