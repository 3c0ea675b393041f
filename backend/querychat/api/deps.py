"""
Route dependencies: the controller, stores and client live on app.state (built in main.create_app).
"""
from fastapi import Request

from querychat.services.chat_history_service import ChatHistoryStore
from querychat.services.query_api.client import QueryApiClient
from querychat.services.query_session import QuerySessionController
from querychat.services.saved_visualizations_service import SavedVisualizationStore


def get_controller(request: Request) -> QuerySessionController:
    return request.app.state.controller


def get_history(request: Request) -> ChatHistoryStore:
    return request.app.state.history


def get_saved_visualizations(request: Request) -> SavedVisualizationStore:
    return request.app.state.saved_visualizations


def get_client(request: Request) -> QueryApiClient:
    return request.app.state.client
