from fastapi import HTTPException, Request

from auth.session import AuthSession
from services.food_log_store import FoodLogStore
from utils.datetime_utils import date_key


def get_store(request: Request) -> FoodLogStore:
    return request.app.state.store


def get_auth_session(request: Request) -> AuthSession:
    return request.app.state.auth_session


def parse_date_param(value: str) -> str:
    try:
        return date_key(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
