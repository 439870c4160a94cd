"""
CSRF Token Endpoint
"""
from fastapi import APIRouter, Depends

from app.api.deps import get_csrf_store
from app.core.security import CsrfTokenStore
from app.schemas.security import CsrfTokenResponse

router = APIRouter(tags=["security"])


@router.get("/csrf", response_model=CsrfTokenResponse)
def issue_csrf_token(store: CsrfTokenStore = Depends(get_csrf_store)):
    """状態を変更するリクエストの X-CSRF-Token ヘッダーに付けるトークンを発行する"""
    return CsrfTokenResponse(token=store.issue())
