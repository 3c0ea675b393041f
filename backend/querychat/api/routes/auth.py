"""
Auth endpoints: proxy login/signup/profile calls to the query service and keep the access token.
"""
import logging

from fastapi import APIRouter, Depends

from querychat.api.deps import get_client, get_controller
from querychat.core.errors import api_error_to_http
from querychat.schemas.api import ChangePasswordRequest, LoginRequest, SignupRequest
from querychat.services.query_api.client import QueryApiClient
from querychat.services.query_session import QuerySessionController

router = APIRouter()
logger = logging.getLogger(__name__)


def _ok_or_raise(result: dict) -> dict:
    if "error" in result:
        raise api_error_to_http(result)
    return result


@router.post("/login")
async def login(
    body: LoginRequest,
    client: QueryApiClient = Depends(get_client),
    controller: QuerySessionController = Depends(get_controller),
):
    """Exchange username/password for a bearer token; the current user becomes the caller of every question."""
    token = _ok_or_raise(await client.login(body.username, body.password))
    user = await client.get_current_user()
    if "error" in user:
        logger.warning("Logged in but could not load current user: %s", user["error"])
        user = None
    else:
        controller.user_id = str(user.get("id")) if user.get("id") is not None else None
    return {"token_type": token.get("token_type", "bearer"), "user": user}


@router.post("/logout")
async def logout(
    client: QueryApiClient = Depends(get_client),
    controller: QuerySessionController = Depends(get_controller),
):
    client.logout()
    controller.user_id = None
    return {"ok": True}


@router.get("/me")
async def me(client: QueryApiClient = Depends(get_client)):
    return _ok_or_raise(await client.get_current_user())


@router.post("/users")
async def signup(body: SignupRequest, client: QueryApiClient = Depends(get_client)):
    return _ok_or_raise(
        await client.create_user(body.username, body.email, body.password, database_data=body.database_data)
    )


@router.post("/users/{user_id}/password")
async def change_password(user_id: str, body: ChangePasswordRequest, client: QueryApiClient = Depends(get_client)):
    return _ok_or_raise(await client.change_password(user_id, body.password))
