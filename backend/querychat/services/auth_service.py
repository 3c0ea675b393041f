"""
Access token persistence: the bearer token issued by POST /token, kept under ACCESS_TOKEN_KEY.
"""
from querychat.core.constants import ACCESS_TOKEN_KEY
from querychat.services.storage import KeyValueStore


class TokenStore:
    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    def get(self) -> str | None:
        return self._storage.get(ACCESS_TOKEN_KEY) or None

    def set(self, token: str) -> None:
        self._storage.set(ACCESS_TOKEN_KEY, token)

    def clear(self) -> None:
        self._storage.delete(ACCESS_TOKEN_KEY)

    def is_authenticated(self) -> bool:
        return self.get() is not None
