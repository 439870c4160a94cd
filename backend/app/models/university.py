"""
University Aggregate Models - 大学集約モデル

大学 → 学部 → 学科 → 入試日程 → {入試情報, 試験種別 → 科目} の木構造。
親子間の外部キーはすべて ON DELETE CASCADE。子から親へは ID のみで参照する。
"""
from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base
from app.models.constants import (
    ADMISSION_STATUSES,
    DEFAULT_ADMISSION_STATUS,
    MAX_ACADEMIC_YEAR,
    MIN_ACADEMIC_YEAR,
    NAME_MAX_LENGTH,
)

_STATUS_LIST = ", ".join(f"'{s}'" for s in ADMISSION_STATUSES)


class EntityMixin:
    """全エンティティ共通のヘッダ列。version は各モデルで version_id_col として登録する"""

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, comment="作成日時")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), comment="更新日時")
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True, comment="論理削除日時")


def _children(target: str, order_by: str):
    return relationship(
        target,
        order_by=order_by,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class University(EntityMixin, Base):
    """大学"""
    __tablename__ = "universities"

    name = Column(String(NAME_MAX_LENGTH), nullable=False, comment="大学名")
    version = Column(Integer, nullable=False)

    departments = _children("Department", "[Department.name, Department.id]")

    __table_args__ = (
        UniqueConstraint("name", name="uix_university_name"),
        CheckConstraint("name <> ''", name="ck_university_name"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<University({self.id} {self.name} v{self.version})>"


class Department(EntityMixin, Base):
    """学部"""
    __tablename__ = "departments"

    university_id = Column(
        Integer, ForeignKey("universities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(NAME_MAX_LENGTH), nullable=False, comment="学部名")
    version = Column(Integer, nullable=False)

    majors = _children("Major", "[Major.name, Major.id]")

    __table_args__ = (
        UniqueConstraint("university_id", "name", name="uix_department_university_name"),
        CheckConstraint("name <> ''", name="ck_department_name"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Department({self.id} {self.name})>"


class Major(EntityMixin, Base):
    """学科"""
    __tablename__ = "majors"

    department_id = Column(
        Integer, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(NAME_MAX_LENGTH), nullable=False, comment="学科名")
    version = Column(Integer, nullable=False)

    admission_schedules = _children(
        "AdmissionSchedule", "[AdmissionSchedule.display_order, AdmissionSchedule.id]"
    )

    __table_args__ = (
        UniqueConstraint("department_id", "name", name="uix_major_department_name"),
        CheckConstraint("name <> ''", name="ck_major_name"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Major({self.id} {self.name})>"


class AdmissionSchedule(EntityMixin, Base):
    """入試日程（前期・後期など）"""
    __tablename__ = "admission_schedules"

    major_id = Column(Integer, ForeignKey("majors.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(NAME_MAX_LENGTH), nullable=False, comment="日程名")
    display_order = Column(Integer, nullable=False, default=0, comment="表示順")
    version = Column(Integer, nullable=False)

    admission_infos = _children("AdmissionInfo", "[AdmissionInfo.created_at, AdmissionInfo.id]")
    test_types = _children("TestType", "[TestType.name, TestType.id]")

    __table_args__ = (
        CheckConstraint("display_order >= 0", name="ck_schedule_display_order"),
        CheckConstraint("name <> ''", name="ck_schedule_name"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<AdmissionSchedule({self.id} {self.name})>"


class AdmissionInfo(EntityMixin, Base):
    """入試情報（年度ごとの募集人数）"""
    __tablename__ = "admission_infos"

    admission_schedule_id = Column(
        Integer, ForeignKey("admission_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    enrollment = Column(Integer, nullable=False, comment="募集人数")
    academic_year = Column(Integer, nullable=False, comment="年度")
    status = Column(String(20), nullable=False, default=DEFAULT_ADMISSION_STATUS, comment="ステータス")
    valid_from = Column(Date, nullable=True, comment="有効開始日")
    valid_until = Column(Date, nullable=True, comment="有効終了日")
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("enrollment > 0", name="ck_info_enrollment"),
        CheckConstraint(
            f"academic_year >= {MIN_ACADEMIC_YEAR} AND academic_year <= {MAX_ACADEMIC_YEAR}",
            name="ck_info_academic_year",
        ),
        CheckConstraint(f"status IN ({_STATUS_LIST})", name="ck_info_status"),
        CheckConstraint(
            "valid_from IS NULL OR valid_until IS NULL OR valid_from <= valid_until",
            name="ck_info_period",
        ),
        Index("ix_info_year_schedule", "academic_year", "admission_schedule_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<AdmissionInfo({self.id} {self.academic_year} {self.status})>"


class TestType(EntityMixin, Base):
    """試験種別（共通・二次など）"""
    __tablename__ = "test_types"

    admission_schedule_id = Column(
        Integer, ForeignKey("admission_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(NAME_MAX_LENGTH), nullable=False, comment="試験種別名")
    version = Column(Integer, nullable=False)

    subjects = _children("Subject", "[Subject.display_order, Subject.id]")

    __table_args__ = (
        CheckConstraint("name <> ''", name="ck_test_type_name"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<TestType({self.id} {self.name})>"


class Subject(EntityMixin, Base):
    """科目（配点と配点比率）"""
    __tablename__ = "subjects"

    test_type_id = Column(Integer, ForeignKey("test_types.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(NAME_MAX_LENGTH), nullable=False, comment="科目名")
    score = Column(Integer, nullable=False, default=0, comment="配点")
    percentage = Column(Float, nullable=False, default=0.0, comment="配点比率")
    display_order = Column(Integer, nullable=False, default=0, comment="表示順")
    version = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("test_type_id", "name", name="uix_subject_test_type_name"),
        CheckConstraint("score >= 0", name="ck_subject_score"),
        CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_subject_percentage"),
        CheckConstraint("display_order >= 0", name="ck_subject_display_order"),
        CheckConstraint("name <> ''", name="ck_subject_name"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Subject({self.id} {self.name} {self.score})>"
