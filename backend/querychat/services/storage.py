"""
Key-value persistence behind the chat history and saved visualization stores.

Values are JSON text written by the stores. Listeners are told which key changed after every write
so other views in the same process can refresh; there is no coordination across processes.
"""
import logging
from typing import Callable, Protocol

from sqlalchemy.orm import Session, sessionmaker

from querychat.models.kv_entry import KVEntry

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...


class _ListenerMixin:
    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.warning("Storage change listener failed for key %s", key, exc_info=True)


class MemoryKeyValueStore(_ListenerMixin):
    """Process-local store. Used by tests and throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__()
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._notify(key)

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._notify(key)


class SqlKeyValueStore(_ListenerMixin):
    """Store backed by the kv_entries table. One short-lived DB session per call."""

    def __init__(self, session_factory: sessionmaker) -> None:
        super().__init__()
        self._session_factory = session_factory

    def _row(self, db: Session, key: str) -> KVEntry | None:
        return db.query(KVEntry).filter(KVEntry.key == key).first()

    def get(self, key: str) -> str | None:
        with self._session_factory() as db:
            row = self._row(db, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            row = self._row(db, key)
            if not row:
                row = KVEntry(key=key)
                db.add(row)
            row.value = value
            db.commit()
        self._notify(key)

    def delete(self, key: str) -> None:
        with self._session_factory() as db:
            deleted = db.query(KVEntry).filter(KVEntry.key == key).delete()
            db.commit()
        if deleted:
            self._notify(key)
