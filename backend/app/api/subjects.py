"""
Subject API Endpoints - 科目（学部の配下）
"""
from typing import List

from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import get_loader, get_writer, read_context, write_context
from app.core.context import OperationContext
from app.schemas.university import SubjectBatchRequest, SubjectCreate, SubjectOut
from app.services.loader import UniversityLoader
from app.services.writer import UniversityWriter

router = APIRouter(prefix="/universities/{university_id}/departments/{department_id}/subjects", tags=["subjects"])


@router.put("/batch", response_model=List[SubjectOut])
def update_subjects_batch(
    university_id: int,
    department_id: int,
    data: SubjectBatchRequest,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    """
    試験種別の科目を一括 upsert する

    - id 付きの科目は更新、id なしは同名の科目を更新するか新規作成
    - 配点比率は試験種別の全科目について再計算される
    """
    return writer.update_subjects_batch(data.test_type_id, data.subjects, university_id, department_id, ctx)


@router.post("", response_model=SubjectOut, status_code=201)
def create_subject(
    university_id: int,
    department_id: int,
    data: SubjectCreate,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.create_subject(university_id, department_id, data, ctx)


@router.get("/{subject_id}", response_model=SubjectOut)
def get_subject(
    university_id: int,
    department_id: int,
    subject_id: int,
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.find_department_subject(university_id, department_id, subject_id, ctx)


@router.put("/{subject_id}", response_model=SubjectOut)
def update_subject(
    university_id: int,
    department_id: int,
    subject_id: int,
    data: SubjectCreate,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.update_subject(university_id, department_id, subject_id, data, ctx)


@router.delete("/{subject_id}", status_code=204)
def delete_subject(
    university_id: int,
    department_id: int,
    subject_id: int,
    soft: bool = Query(False, description="論理削除"),
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    writer.delete_subject(university_id, department_id, subject_id, soft, ctx)
    return Response(status_code=204)
