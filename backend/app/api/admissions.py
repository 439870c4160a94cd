"""
Admission API Endpoints - 入試情報と試験種別（入試日程の配下）
"""
from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import get_loader, get_writer, read_context, write_context
from app.core.context import OperationContext
from app.schemas.university import AdmissionInfoIn, AdmissionInfoOut, TestTypeIn, TestTypeOut
from app.services.loader import UniversityLoader
from app.services.writer import UniversityWriter

router = APIRouter(prefix="/admission-schedules/{schedule_id}", tags=["admissions"])


@router.post("/info", response_model=AdmissionInfoOut, status_code=201)
def create_admission_info(
    schedule_id: int,
    data: AdmissionInfoIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.create_admission_info(schedule_id, data, ctx)


@router.get("/info/{info_id}", response_model=AdmissionInfoOut)
def get_admission_info(
    schedule_id: int,
    info_id: int,
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.find_admission_info(schedule_id, info_id, ctx)


@router.put("/info/{info_id}", response_model=AdmissionInfoOut)
def update_admission_info(
    schedule_id: int,
    info_id: int,
    data: AdmissionInfoIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.update_admission_info(schedule_id, info_id, data, ctx)


@router.delete("/info/{info_id}", status_code=204)
def delete_admission_info(
    schedule_id: int,
    info_id: int,
    soft: bool = Query(False, description="論理削除"),
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    writer.delete_admission_info(schedule_id, info_id, soft, ctx)
    return Response(status_code=204)


@router.post("/test-types", response_model=TestTypeOut, status_code=201)
def create_test_type(
    schedule_id: int,
    data: TestTypeIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.create_test_type(schedule_id, data, ctx)


@router.get("/test-types/{test_type_id}", response_model=TestTypeOut)
def get_test_type(
    schedule_id: int,
    test_type_id: int,
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.find_test_type(schedule_id, test_type_id, ctx)


@router.put("/test-types/{test_type_id}", response_model=TestTypeOut)
def update_test_type(
    schedule_id: int,
    test_type_id: int,
    data: TestTypeIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.update_test_type(schedule_id, test_type_id, data, ctx)


@router.delete("/test-types/{test_type_id}", status_code=204)
def delete_test_type(
    schedule_id: int,
    test_type_id: int,
    soft: bool = Query(False, description="論理削除"),
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    writer.delete_test_type(schedule_id, test_type_id, soft, ctx)
    return Response(status_code=204)
