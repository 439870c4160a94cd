"""
Department API Endpoints - 学部
"""
from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import get_loader, get_writer, read_context, write_context
from app.core.context import OperationContext
from app.schemas.university import DepartmentIn, DepartmentOut
from app.services.loader import UniversityLoader
from app.services.writer import UniversityWriter

router = APIRouter(prefix="/universities/{university_id}/departments", tags=["departments"])


@router.post("", response_model=DepartmentOut, status_code=201)
def create_department(
    university_id: int,
    data: DepartmentIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.create_department(university_id, data, ctx)


@router.get("/{department_id}", response_model=DepartmentOut)
def get_department(
    university_id: int,
    department_id: int,
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.find_department(university_id, department_id, ctx)


@router.put("/{department_id}", response_model=DepartmentOut)
def update_department(
    university_id: int,
    department_id: int,
    data: DepartmentIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.update_department(university_id, department_id, data, ctx)


@router.delete("/{department_id}", status_code=204)
def delete_department(
    university_id: int,
    department_id: int,
    soft: bool = Query(False, description="論理削除"),
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    writer.delete_department(university_id, department_id, soft, ctx)
    return Response(status_code=204)
