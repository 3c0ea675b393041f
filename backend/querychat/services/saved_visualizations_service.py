"""
Saved visualizations: charts a user pinned to their dashboard, newest first, under SAVED_VISUALIZATIONS_KEY.
"""
import logging

from pydantic import TypeAdapter, ValidationError

from querychat.core.constants import SAVED_VISUALIZATIONS_KEY
from querychat.schemas.chat import SavedVisualization, VisualizationSpec, new_id
from querychat.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

SavedAdapter = TypeAdapter(list[SavedVisualization])


class SavedVisualizationStore:
    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    def get_all_visualizations(self) -> list[SavedVisualization]:
        raw = self._storage.get(SAVED_VISUALIZATIONS_KEY)
        if not raw or not raw.strip():
            return []
        try:
            return SavedAdapter.validate_json(raw.encode("utf-8"))
        except ValidationError:
            logger.warning("Stored visualizations are unreadable; treating them as empty", exc_info=True)
            return []

    def _save(self, items: list[SavedVisualization]) -> None:
        self._storage.set(SAVED_VISUALIZATIONS_KEY, SavedAdapter.dump_json(items).decode("utf-8"))

    def save_visualization(self, visualization: VisualizationSpec, title: str) -> SavedVisualization:
        saved = SavedVisualization(
            id=new_id("viz"),
            title=title.strip(),
            type=visualization.type,
            payload=visualization.payload,
        )
        self._save([saved, *self.get_all_visualizations()])
        return saved

    def delete_visualization(self, visualization_id: str) -> bool:
        items = self.get_all_visualizations()
        remaining = [v for v in items if v.id != visualization_id]
        if len(remaining) == len(items):
            return False
        self._save(remaining)
        return True
