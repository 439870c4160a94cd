"""
Filter Option API Endpoints - フィルターオプション
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_filter_option_service, read_context, write_context
from app.core.context import OperationContext
from app.schemas.filter_option import FilterOptionCreate, FilterOptionListResponse, FilterOptionOut
from app.services.filter_options import FilterOptionService

router = APIRouter(prefix="/filter-options", tags=["filter-options"])


@router.get("", response_model=FilterOptionListResponse)
def list_filter_options(
    category: Optional[str] = Query(None, description="カテゴリで絞り込む"),
    service: FilterOptionService = Depends(get_filter_option_service),
    ctx: OperationContext = Depends(read_context),
):
    items = service.list(category, ctx)
    return FilterOptionListResponse(total=len(items), items=items)


@router.post("", response_model=FilterOptionOut, status_code=201)
def create_filter_option(
    data: FilterOptionCreate,
    service: FilterOptionService = Depends(get_filter_option_service),
    ctx: OperationContext = Depends(write_context),
):
    return service.create(data, ctx)
