import json
from typing import Callable

import httpx


def ndjson(*records) -> bytes:
    """Body of a query stream: one JSON record per line; str items are sent as-is."""
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    return ("\n".join(lines) + "\n").encode("utf-8")


class FakeQueryService:
    """Records requests and answers /query/stream with a canned body."""

    def __init__(self, body: bytes = b"", status_code: int = 200) -> None:
        self.body = body
        self.status_code = status_code
        self.requests: list[httpx.Request] = []
        self.error: Exception | None = None
        # Answers every request when set (auth endpoints etc.)
        self.handler_override: Callable[[httpx.Request], httpx.Response] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.handler_override is not None:
            return self.handler_override(request)
        if request.url.path == "/operations/getSchema":
            return httpx.Response(
                200,
                json={"success": True, "message": "Connected", "table_count": 2, "tables": ["a", "b"], "timestamp": "t"},
            )
        return httpx.Response(self.status_code, content=self.body)

    def stream_bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == "/query/stream"]
