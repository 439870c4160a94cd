"""
Major API Endpoints - 学科と入試日程
"""
from fastapi import APIRouter, Depends, Query, Response

from app.api.deps import get_loader, get_writer, read_context, write_context
from app.core.context import OperationContext
from app.schemas.university import AdmissionScheduleIn, AdmissionScheduleOut, MajorIn, MajorOut
from app.services.loader import UniversityLoader
from app.services.writer import UniversityWriter

router = APIRouter(prefix="/universities/{university_id}/departments/{department_id}/majors", tags=["majors"])


@router.post("", response_model=MajorOut, status_code=201)
def create_major(
    university_id: int,
    department_id: int,
    data: MajorIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.create_major(university_id, department_id, data, ctx)


@router.get("/{major_id}", response_model=MajorOut)
def get_major(
    university_id: int,
    department_id: int,
    major_id: int,
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.find_major(department_id, major_id, university_id, ctx)


@router.put("/{major_id}", response_model=MajorOut)
def update_major(
    university_id: int,
    department_id: int,
    major_id: int,
    data: MajorIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.update_major(university_id, department_id, major_id, data, ctx)


@router.delete("/{major_id}", status_code=204)
def delete_major(
    university_id: int,
    department_id: int,
    major_id: int,
    soft: bool = Query(False, description="論理削除"),
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    writer.delete_major(university_id, department_id, major_id, soft, ctx)
    return Response(status_code=204)


# 入試日程

@router.post("/{major_id}/admission-schedules", response_model=AdmissionScheduleOut, status_code=201)
def create_admission_schedule(
    university_id: int,
    department_id: int,
    major_id: int,
    data: AdmissionScheduleIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.create_admission_schedule(university_id, department_id, major_id, data, ctx)


@router.get("/{major_id}/admission-schedules/{schedule_id}", response_model=AdmissionScheduleOut)
def get_admission_schedule(
    university_id: int,
    department_id: int,
    major_id: int,
    schedule_id: int,
    loader: UniversityLoader = Depends(get_loader),
    ctx: OperationContext = Depends(read_context),
):
    return loader.find_admission_schedule(major_id, schedule_id, university_id, department_id, ctx)


@router.put("/{major_id}/admission-schedules/{schedule_id}", response_model=AdmissionScheduleOut)
def update_admission_schedule(
    university_id: int,
    department_id: int,
    major_id: int,
    schedule_id: int,
    data: AdmissionScheduleIn,
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    return writer.update_admission_schedule(university_id, department_id, major_id, schedule_id, data, ctx)


@router.delete("/{major_id}/admission-schedules/{schedule_id}", status_code=204)
def delete_admission_schedule(
    university_id: int,
    department_id: int,
    major_id: int,
    schedule_id: int,
    soft: bool = Query(False, description="論理削除"),
    writer: UniversityWriter = Depends(get_writer),
    ctx: OperationContext = Depends(write_context),
):
    writer.delete_admission_schedule(university_id, department_id, major_id, schedule_id, soft, ctx)
    return Response(status_code=204)
