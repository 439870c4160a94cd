"""
Cache Admin API - 読み取りキャッシュの状態確認と破棄
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_cache
from app.services.cache import ReadCache

router = APIRouter(prefix="/admin", tags=["cache-admin"])


@router.get("/cache-stats")
def cache_stats(
    prefix: Optional[str] = Query(None, description="キーの接頭辞で絞り込む"),
    cache: ReadCache = Depends(get_cache),
):
    """
    キャッシュの件数・ヒット数・ミス数と、格納中のキー
    """
    keys = cache.keys()
    if prefix:
        keys = [k for k in keys if k.startswith(prefix)]
    return {**cache.stats(), "keys": keys}


@router.post("/cache/flush")
def flush_cache(
    prefix: Optional[str] = Query(None, description="指定した接頭辞のキーだけを破棄する"),
    cache: ReadCache = Depends(get_cache),
):
    """
    キャッシュを破棄する（次の読み取りでデータベースから再構築される）
    """
    if prefix:
        removed = cache.delete_prefix(prefix)
    else:
        removed = len(cache.keys())
        cache.clear()
    return {
        "message": f"{removed} 件のキャッシュを破棄しました",
        "removed": removed,
    }
