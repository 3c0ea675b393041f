"""
Saved visualizations and chart rendering for the dashboard.
"""
from fastapi import APIRouter, Depends

from querychat.api.deps import get_saved_visualizations
from querychat.schemas.api import RenderRequest, SaveVisualizationRequest
from querychat.services.saved_visualizations_service import SavedVisualizationStore
from querychat.services.visualization.renderer import render_visualization

router = APIRouter()


@router.get("")
async def list_visualizations(store: SavedVisualizationStore = Depends(get_saved_visualizations)):
    return {"visualizations": [v.model_dump(mode="json") for v in store.get_all_visualizations()]}


@router.post("")
async def save_visualization(
    body: SaveVisualizationRequest,
    store: SavedVisualizationStore = Depends(get_saved_visualizations),
):
    if not body.title.strip():
        return {"error": "Title is required."}
    return store.save_visualization(body.visualization, body.title).model_dump(mode="json")


@router.delete("/{visualization_id}")
async def delete_visualization(
    visualization_id: str,
    store: SavedVisualizationStore = Depends(get_saved_visualizations),
):
    if not store.delete_visualization(visualization_id):
        return {"error": "Visualization not found."}
    return {"ok": True}


@router.post("/render")
async def render(body: RenderRequest):
    """Declarative figure for a chart; payload text is never executed."""
    figure = render_visualization(body.visualization, body.results)
    return {"figure": figure.model_dump(exclude_none=True), "plotly": figure.to_plotly()}
