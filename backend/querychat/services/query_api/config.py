"""Query service config. Base URL and timeouts from settings (API_BASE_URL etc.) or QueryApiClient args."""
from querychat.config import settings


class ApiConfig:
    """Base URL and timeouts for the query service."""

    __slots__ = ("base_url", "timeout", "stream_timeout")

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        stream_timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        # Reads on the query stream may idle while the service runs SQL.
        self.stream_timeout = stream_timeout if stream_timeout is not None else settings.stream_timeout_seconds

    def headers(self, token: str | None = None) -> dict[str, str]:
        h = {"Accept": "application/json"}
        if token:
            h["Authorization"] = f"Bearer {token}"
        return h
