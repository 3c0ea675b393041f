"""
Data source connection: the query service must be connected to a database before questions are accepted.
"""
from fastapi import APIRouter, Depends

from querychat.api.deps import get_controller
from querychat.schemas.api import ConnectionStatus, ConnectRequest
from querychat.services.query_session import QuerySessionController

router = APIRouter()


@router.post("", response_model=ConnectionStatus)
async def connect(body: ConnectRequest, controller: QuerySessionController = Depends(get_controller)) -> ConnectionStatus:
    return await controller.connect(body.db_url, body.gemini_api_key)


@router.get("", response_model=ConnectionStatus)
async def connection_status(controller: QuerySessionController = Depends(get_controller)) -> ConnectionStatus:
    return controller.connection or ConnectionStatus(success=False, message="Not connected to database")
