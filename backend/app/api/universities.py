"""
University API Endpoints - 大学集約
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import get_loader, get_writer, read_context, write_context
from app.core.context import OperationContext
from app.schemas.university import UniversityIn, UniversityListResponse, UniversityOut
from app.services.loader import UniversityLoader
from app.services.writer import UniversityWriter

router = APIRouter(tags=["universities"])


@router.get("/universities", response_model=UniversityListResponse)
def list_universities(
    page: int = Query(1, ge=1, description="ページ番号"),
    page_size: Optional[int] = Query(None, ge=1, le=1000, description="1 ページの件数（省略時は全件）"),
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    """大学の一覧（名前順）"""
    items = loader.find_all(ctx)
    total = len(items)
    if page_size is not None:
        start = (page - 1) * page_size
        items = items[start:start + page_size]
    return UniversityListResponse(total=total, items=items)


@router.get("/universities/search", response_model=List[UniversityOut])
def search_universities(
    q: str = Query("", description="大学名・学部名・学科名の部分一致"),
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.search(q, ctx)


@router.post("/universities", response_model=UniversityOut, status_code=201)
def create_university(
    data: UniversityIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    """
    大学集約を作成する

    - 配下の学部・学科・入試日程・試験種別・科目をまとめて作成できる
    - 科目の配点比率はサーバー側で計算される
    """
    return writer.create_university(data, ctx)


@router.get("/universities/{university_id}", response_model=UniversityOut)
def get_university(
    university_id: int,
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.find_by_id(university_id, ctx)


@router.put("/universities/{university_id}", response_model=UniversityOut)
def update_university(
    university_id: int,
    data: UniversityIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    """
    大学集約を更新する

    version を指定した場合、現在のバージョンと一致しなければ 409 を返す。
    """
    return writer.update_university(university_id, data, ctx)


@router.delete("/universities/{university_id}", status_code=204)
def delete_university(
    university_id: int,
    soft: bool = Query(False, description="論理削除"),
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    writer.delete_university(university_id, soft, ctx)
    return Response(status_code=204)
