from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.deps import get_auth_session, get_store
from auth.session import AuthError, AuthSession
from services.food_log_store import FoodLogStore

router = APIRouter(prefix="/session", tags=["session"])


class SignInRequest(BaseModel):
    token: Optional[str] = None
    user_id: Optional[str] = None


def _session_payload(auth: AuthSession, store: FoodLogStore) -> dict:
    return {
        "authenticated": auth.is_authenticated,
        "user_id": auth.user_id,
        "remote_sync": store.remote_store is not None,
    }


@router.get("")
def get_session(
    auth: AuthSession = Depends(get_auth_session),
    store: FoodLogStore = Depends(get_store),
):
    return _session_payload(auth, store)


@router.post("")
async def sign_in(
    req: SignInRequest,
    auth: AuthSession = Depends(get_auth_session),
    store: FoodLogStore = Depends(get_store),
):
    try:
        if req.token:
            await auth.sign_in_with_token(req.token)
        elif req.user_id:
            await auth.sign_in(req.user_id)
        else:
            raise HTTPException(status_code=422, detail="Provide either token or user_id")
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    return _session_payload(auth, store)


@router.delete("")
async def sign_out(
    auth: AuthSession = Depends(get_auth_session),
    store: FoodLogStore = Depends(get_store),
):
    await auth.sign_out()
    return _session_payload(auth, store)
