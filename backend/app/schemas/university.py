"""
University Schemas - Pydantic モデル

入力モデルは範囲チェックを持たない。範囲・件数・重複はバリデータがフィールドパス付きで報告する。
子コレクションが None の場合、更新では既存の子を変更せず、作成では空として扱う。
"""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# 入力モデル
# ---------------------------------------------------------------------------

class SubjectIn(BaseModel):
    """科目（入力）"""
    id: Optional[int] = None
    name: str
    score: int = 0
    percentage: float = 0.0
    display_order: int = 0
    version: Optional[int] = None


class SubjectCreate(SubjectIn):
    """科目の作成・更新（所属する試験種別を指定）"""
    test_type_id: int


class SubjectBatchRequest(BaseModel):
    """科目の一括更新"""
    test_type_id: int
    subjects: List[SubjectIn]


class TestTypeIn(BaseModel):
    """試験種別（入力）"""
    id: Optional[int] = None
    name: str
    version: Optional[int] = None
    subjects: Optional[List[SubjectIn]] = None


class AdmissionInfoIn(BaseModel):
    """入試情報（入力）"""
    id: Optional[int] = None
    enrollment: int
    academic_year: int
    status: str = "draft"
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    version: Optional[int] = None


class AdmissionScheduleIn(BaseModel):
    """入試日程（入力）"""
    id: Optional[int] = None
    name: str
    display_order: int = 0
    version: Optional[int] = None
    admission_infos: Optional[List[AdmissionInfoIn]] = None
    test_types: Optional[List[TestTypeIn]] = None


class MajorIn(BaseModel):
    """学科（入力）"""
    id: Optional[int] = None
    name: str
    version: Optional[int] = None
    admission_schedules: Optional[List[AdmissionScheduleIn]] = None


class DepartmentIn(BaseModel):
    """学部（入力）"""
    id: Optional[int] = None
    name: str
    version: Optional[int] = None
    majors: Optional[List[MajorIn]] = None


class UniversityIn(BaseModel):
    """大学集約（入力）"""
    id: Optional[int] = None
    name: str
    version: Optional[int] = None
    departments: Optional[List[DepartmentIn]] = None


# ---------------------------------------------------------------------------
# 出力モデル
# ---------------------------------------------------------------------------

class EntityOut(BaseModel):
    id: int
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        frozen = True


class SubjectOut(EntityOut):
    test_type_id: int
    name: str
    score: int
    percentage: float
    display_order: int


class TestTypeOut(EntityOut):
    admission_schedule_id: int
    name: str
    subjects: List[SubjectOut] = []


class AdmissionInfoOut(EntityOut):
    admission_schedule_id: int
    enrollment: int
    academic_year: int
    status: str
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None


class AdmissionScheduleOut(EntityOut):
    major_id: int
    name: str
    display_order: int
    admission_infos: List[AdmissionInfoOut] = []
    test_types: List[TestTypeOut] = []


class MajorOut(EntityOut):
    department_id: int
    name: str
    admission_schedules: List[AdmissionScheduleOut] = []


class DepartmentOut(EntityOut):
    university_id: int
    name: str
    majors: List[MajorOut] = []


class UniversityOut(EntityOut):
    name: str
    departments: List[DepartmentOut] = []


class UniversityListResponse(BaseModel):
    """一覧レスポンス"""
    total: int
    items: List[UniversityOut]
