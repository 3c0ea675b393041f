"""
Request/response bodies for the query service and for this app's routes.
"""
from typing import Any

from pydantic import BaseModel, Field

from querychat.schemas.chat import QueryResult, VisualizationSpec


class ConnectionStatus(BaseModel):
    """Result of POST /operations/getSchema on the query service."""

    success: bool = False
    message: str = ""
    table_count: int = 0
    tables: list[Any] = Field(default_factory=list)
    timestamp: str | None = None


class ConnectRequest(BaseModel):
    db_url: str
    gemini_api_key: str | None = None


class LoginRequest(BaseModel):
    username: str
    password: str


class SignupRequest(BaseModel):
    username: str
    email: str
    password: str
    database_data: dict[str, Any] | None = None


class ChangePasswordRequest(BaseModel):
    password: str


class AskRequest(BaseModel):
    message: str


class SaveVisualizationRequest(BaseModel):
    visualization: VisualizationSpec
    title: str


class RenderRequest(BaseModel):
    visualization: VisualizationSpec
    results: QueryResult | None = None
