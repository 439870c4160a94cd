"""
University Writer - 大学集約の書き込み

すべての書き込みは次の順で処理する:
サニタイズ → 配点比率の再計算 → 検証 → トランザクション（親の確認・件数上限・
楽観的ロック・反映・flush）→ コミット → キャッシュ無効化 → ローダーでの再読み込み
"""
import logging
from typing import List, Optional

from pydantic import BaseModel

from app.core.context import OperationContext
from app.core.database import SessionLocal
from app.core.errors import NotFoundError, ParentNotFoundError, ValidationError
from app.crud import university as crud
from app.models import constants as c
from app.models.university import (
    AdmissionInfo,
    AdmissionSchedule,
    Department,
    Major,
    Subject,
    TestType,
    University,
)
from app.schemas.university import (
    AdmissionInfoIn,
    AdmissionInfoOut,
    AdmissionScheduleIn,
    AdmissionScheduleOut,
    DepartmentIn,
    DepartmentOut,
    MajorIn,
    MajorOut,
    SubjectCreate,
    SubjectIn,
    SubjectOut,
    TestTypeIn,
    TestTypeOut,
    UniversityIn,
    UniversityOut,
)
from app.services import validator as v
from app.services.cache import CacheScope, ReadCache, read_cache
from app.services.loader import UniversityLoader, university_loader
from app.services.sanitizer import Sanitizer, sanitizer as default_sanitizer
from app.services.transaction import RetryPolicy, Transaction, TransactionRunner
from app.services.validator import AggregateValidator, validator as default_validator

logger = logging.getLogger(__name__)


def recompute_payload_percentages(payload):
    """dict / list をたどり、subjects を持つノードごとに配点比率を再計算する"""
    if isinstance(payload, list):
        for item in payload:
            recompute_payload_percentages(item)
        return
    if not isinstance(payload, dict):
        return
    subjects = payload.get("subjects")
    if isinstance(subjects, list) and subjects:
        scores = [s.get("score") for s in subjects if isinstance(s, dict)]
        valid = len(scores) == len(subjects) and all(
            isinstance(score, (int, float)) and score >= 0 for score in scores
        )
        if valid:
            for subject, percentage in zip(subjects, crud.compute_percentages(scores)):
                subject["percentage"] = percentage
    for value in payload.values():
        if isinstance(value, (dict, list)):
            recompute_payload_percentages(value)


class UniversityWriter:
    def __init__(self, runner: TransactionRunner, cache: ReadCache, loader: UniversityLoader,
                 sanitizer: Optional[Sanitizer] = None, validator: Optional[AggregateValidator] = None):
        self.runner = runner
        self.cache = cache
        self.loader = loader
        self.sanitizer = sanitizer or default_sanitizer
        self.validator = validator or default_validator

    # -----------------------------------------------------------------------
    # 共通処理
    # -----------------------------------------------------------------------

    def _prepare(self, kind: str, data: BaseModel) -> BaseModel:
        payload = self.sanitizer.sanitize_data(data.model_dump())
        if kind == v.SUBJECT:
            payload["percentage"] = 0.0
        recompute_payload_percentages(payload)
        prepared = type(data).model_validate(payload)
        self.validator.validate(kind, prepared)
        return prepared

    def _write(self, operation: str, body, ctx: Optional[OperationContext],
               policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None,
               bump_owner: bool = True):
        """
        body をトランザクションで実行し、コミット後にキャッシュを無効化する

        配下のエンティティへの書き込みでは、同じトランザクションで所有する大学のバージョンも進める。
        """
        self.runner.check_writable(operation)
        ctx = ctx or OperationContext(self.runner.timeout, operation)

        def run(tx: Transaction):
            scope, result = body(tx)
            if bump_owner and scope is not None:
                crud.touch_university(tx.session, scope.university_id)
            return scope, result

        scope, result = self.runner.run(run, ctx, policy=policy, isolation=isolation, operation=operation)
        if scope is None:
            self.cache.flush_families()
        else:
            self.cache.invalidate_university(scope)
        logger.info("[Writer] %s committed", operation)
        return result

    @staticmethod
    def _check_capacity(db, model, parent_column, parent_id: int, limit: int, field: str, adding: int = 1):
        if crud.count_children(db, model, parent_column, parent_id) + adding > limit:
            raise ValidationError.single(field, f"{field}は{limit}件以下である必要があります", "TOO_MANY_ITEMS")

    def _update_node(self, tx: Transaction, obj, data, university_id: int, resource: str):
        db = tx.session
        crud.check_version(obj, data.version, resource)
        before = crud.collect_scope(db, university_id)
        crud.apply_entity(obj, data)
        crud.touch(obj)
        db.flush()
        return before.merge(crud.collect_scope(db, university_id))

    def _delete_node(self, tx: Transaction, obj, university_id: int, soft: bool):
        db = tx.session
        scope = crud.collect_scope(db, university_id)
        if soft:
            crud.soft_delete(obj)
        else:
            db.delete(obj)
        db.flush()
        return scope

    # -----------------------------------------------------------------------
    # 大学
    # -----------------------------------------------------------------------

    def create_university(self, data: UniversityIn, ctx: Optional[OperationContext] = None,
                          policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> UniversityOut:
        data = self._prepare(v.UNIVERSITY, data)

        def body(tx: Transaction):
            university = crud.build_entity(University, data)
            tx.session.add(university)
            tx.session.flush()
            return CacheScope(university.id), university.id

        university_id = self._write("create_university", body, ctx, policy, isolation, bump_owner=False)
        return self.loader.find_by_id(university_id)

    def update_university(self, university_id: int, data: UniversityIn,
                          ctx: Optional[OperationContext] = None,
                          policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> UniversityOut:
        data = self._prepare(v.UNIVERSITY, data)

        def body(tx: Transaction):
            university = crud.get_live(tx.session, University, university_id)
            if university is None:
                raise NotFoundError("University", university_id)
            return self._update_node(tx, university, data, university_id, "University"), None

        self._write("update_university", body, ctx, policy, isolation, bump_owner=False)
        return self.loader.find_by_id(university_id)

    def delete_university(self, university_id: int, soft: bool = False,
                          ctx: Optional[OperationContext] = None,
                          policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None):
        def body(tx: Transaction):
            university = crud.get_live(tx.session, University, university_id)
            if university is None:
                raise NotFoundError("University", university_id)
            return self._delete_node(tx, university, university_id, soft), None

        self._write("delete_university", body, ctx, policy, isolation, bump_owner=False)

    # -----------------------------------------------------------------------
    # 学部
    # -----------------------------------------------------------------------

    def create_department(self, university_id: int, data: DepartmentIn,
                          ctx: Optional[OperationContext] = None,
                          policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> DepartmentOut:
        data = self._prepare(v.DEPARTMENT, data)

        def body(tx: Transaction):
            db = tx.session
            if crud.get_live(db, University, university_id) is None:
                raise ParentNotFoundError("University", university_id)
            self._check_capacity(db, Department, Department.university_id, university_id,
                                 c.MAX_DEPARTMENTS, "departments")
            department = crud.build_entity(Department, data)
            department.university_id = university_id
            db.add(department)
            db.flush()
            return crud.collect_scope(db, university_id), department.id

        department_id = self._write("create_department", body, ctx, policy, isolation)
        return self.loader.find_department(university_id, department_id)

    def _department(self, db, university_id: int, department_id: int) -> Department:
        department = crud.get_live(db, Department, department_id)
        if department is None or department.university_id != university_id \
                or crud.department_chain(db, department_id) is None:
            raise NotFoundError("Department", department_id)
        return department

    def update_department(self, university_id: int, department_id: int, data: DepartmentIn,
                          ctx: Optional[OperationContext] = None,
                          policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> DepartmentOut:
        data = self._prepare(v.DEPARTMENT, data)

        def body(tx: Transaction):
            department = self._department(tx.session, university_id, department_id)
            return self._update_node(tx, department, data, university_id, "Department"), None

        self._write("update_department", body, ctx, policy, isolation)
        return self.loader.find_department(university_id, department_id)

    def delete_department(self, university_id: int, department_id: int, soft: bool = False,
                          ctx: Optional[OperationContext] = None,
                          policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None):
        def body(tx: Transaction):
            department = self._department(tx.session, university_id, department_id)
            return self._delete_node(tx, department, university_id, soft), None

        self._write("delete_department", body, ctx, policy, isolation)

    # -----------------------------------------------------------------------
    # 学科
    # -----------------------------------------------------------------------

    def create_major(self, university_id: int, department_id: int, data: MajorIn,
                     ctx: Optional[OperationContext] = None,
                     policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> MajorOut:
        data = self._prepare(v.MAJOR, data)

        def body(tx: Transaction):
            db = tx.session
            if crud.department_chain(db, department_id) != university_id:
                raise ParentNotFoundError("Department", department_id)
            self._check_capacity(db, Major, Major.department_id, department_id, c.MAX_MAJORS, "majors")
            major = crud.build_entity(Major, data)
            major.department_id = department_id
            db.add(major)
            db.flush()
            return crud.collect_scope(db, university_id), major.id

        major_id = self._write("create_major", body, ctx, policy, isolation)
        return self.loader.find_major(department_id, major_id, university_id)

    def _major(self, db, university_id: int, department_id: int, major_id: int) -> Major:
        chain = crud.major_chain(db, major_id)
        if chain is None or tuple(chain) != (university_id, department_id):
            raise NotFoundError("Major", major_id)
        return db.get(Major, major_id)

    def update_major(self, university_id: int, department_id: int, major_id: int, data: MajorIn,
                     ctx: Optional[OperationContext] = None,
                     policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> MajorOut:
        data = self._prepare(v.MAJOR, data)

        def body(tx: Transaction):
            major = self._major(tx.session, university_id, department_id, major_id)
            return self._update_node(tx, major, data, university_id, "Major"), None

        self._write("update_major", body, ctx, policy, isolation)
        return self.loader.find_major(department_id, major_id, university_id)

    def delete_major(self, university_id: int, department_id: int, major_id: int, soft: bool = False,
                     ctx: Optional[OperationContext] = None,
                     policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None):
        def body(tx: Transaction):
            major = self._major(tx.session, university_id, department_id, major_id)
            return self._delete_node(tx, major, university_id, soft), None

        self._write("delete_major", body, ctx, policy, isolation)

    # -----------------------------------------------------------------------
    # 入試日程
    # -----------------------------------------------------------------------

    def create_admission_schedule(self, university_id: int, department_id: int, major_id: int,
                                  data: AdmissionScheduleIn,
                                  ctx: Optional[OperationContext] = None,
                                  policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> AdmissionScheduleOut:
        data = self._prepare(v.ADMISSION_SCHEDULE, data)

        def body(tx: Transaction):
            db = tx.session
            chain = crud.major_chain(db, major_id)
            if chain is None or tuple(chain) != (university_id, department_id):
                raise ParentNotFoundError("Major", major_id)
            schedule = crud.build_entity(AdmissionSchedule, data)
            schedule.major_id = major_id
            db.add(schedule)
            db.flush()
            return crud.collect_scope(db, university_id), schedule.id

        schedule_id = self._write("create_admission_schedule", body, ctx, policy, isolation)
        return self.loader.find_admission_schedule(major_id, schedule_id, university_id, department_id)

    def _schedule(self, db, university_id: int, department_id: int, major_id: int,
                  schedule_id: int) -> AdmissionSchedule:
        chain = crud.schedule_chain(db, schedule_id)
        if chain is None or tuple(chain) != (university_id, department_id, major_id):
            raise NotFoundError("AdmissionSchedule", schedule_id)
        return db.get(AdmissionSchedule, schedule_id)

    def update_admission_schedule(self, university_id: int, department_id: int, major_id: int,
                                  schedule_id: int, data: AdmissionScheduleIn,
                                  ctx: Optional[OperationContext] = None,
                                  policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> AdmissionScheduleOut:
        data = self._prepare(v.ADMISSION_SCHEDULE, data)

        def body(tx: Transaction):
            schedule = self._schedule(tx.session, university_id, department_id, major_id, schedule_id)
            return self._update_node(tx, schedule, data, university_id, "AdmissionSchedule"), None

        self._write("update_admission_schedule", body, ctx, policy, isolation)
        return self.loader.find_admission_schedule(major_id, schedule_id, university_id, department_id)

    def delete_admission_schedule(self, university_id: int, department_id: int, major_id: int,
                                  schedule_id: int, soft: bool = False,
                                  ctx: Optional[OperationContext] = None,
                                  policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None):
        def body(tx: Transaction):
            schedule = self._schedule(tx.session, university_id, department_id, major_id, schedule_id)
            return self._delete_node(tx, schedule, university_id, soft), None

        self._write("delete_admission_schedule", body, ctx, policy, isolation)

    # -----------------------------------------------------------------------
    # 入試情報・試験種別（入試日程の配下）
    # -----------------------------------------------------------------------

    @staticmethod
    def _schedule_owner(db, schedule_id: int) -> int:
        chain = crud.schedule_chain(db, schedule_id)
        if chain is None:
            raise ParentNotFoundError("AdmissionSchedule", schedule_id)
        return chain[0]

    def _schedule_child(self, db, model, schedule_id: int, entity_id: int):
        obj = crud.get_live(db, model, entity_id)
        if obj is None or obj.admission_schedule_id != schedule_id:
            raise NotFoundError(model.__name__, entity_id)
        chain = crud.schedule_chain(db, schedule_id)
        if chain is None:
            raise NotFoundError(model.__name__, entity_id)
        return obj, chain[0]

    def create_admission_info(self, schedule_id: int, data: AdmissionInfoIn,
                              ctx: Optional[OperationContext] = None,
                              policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> AdmissionInfoOut:
        data = self._prepare(v.ADMISSION_INFO, data)

        def body(tx: Transaction):
            db = tx.session
            university_id = self._schedule_owner(db, schedule_id)
            info = crud.build_entity(AdmissionInfo, data)
            info.admission_schedule_id = schedule_id
            db.add(info)
            db.flush()
            return crud.collect_scope(db, university_id), info.id

        info_id = self._write("create_admission_info", body, ctx, policy, isolation)
        return self.loader.find_admission_info(schedule_id, info_id)

    def update_admission_info(self, schedule_id: int, info_id: int, data: AdmissionInfoIn,
                              ctx: Optional[OperationContext] = None,
                              policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> AdmissionInfoOut:
        data = self._prepare(v.ADMISSION_INFO, data)

        def body(tx: Transaction):
            info, university_id = self._schedule_child(tx.session, AdmissionInfo, schedule_id, info_id)
            return self._update_node(tx, info, data, university_id, "AdmissionInfo"), None

        self._write("update_admission_info", body, ctx, policy, isolation)
        return self.loader.find_admission_info(schedule_id, info_id)

    def delete_admission_info(self, schedule_id: int, info_id: int, soft: bool = False,
                              ctx: Optional[OperationContext] = None,
                              policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None):
        def body(tx: Transaction):
            info, university_id = self._schedule_child(tx.session, AdmissionInfo, schedule_id, info_id)
            return self._delete_node(tx, info, university_id, soft), None

        self._write("delete_admission_info", body, ctx, policy, isolation)

    def create_test_type(self, schedule_id: int, data: TestTypeIn,
                         ctx: Optional[OperationContext] = None,
                         policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> TestTypeOut:
        data = self._prepare(v.TEST_TYPE, data)

        def body(tx: Transaction):
            db = tx.session
            university_id = self._schedule_owner(db, schedule_id)
            test_type = crud.build_entity(TestType, data)
            test_type.admission_schedule_id = schedule_id
            db.add(test_type)
            db.flush()
            return crud.collect_scope(db, university_id), test_type.id

        test_type_id = self._write("create_test_type", body, ctx, policy, isolation)
        return self.loader.find_test_type(schedule_id, test_type_id)

    def update_test_type(self, schedule_id: int, test_type_id: int, data: TestTypeIn,
                         ctx: Optional[OperationContext] = None,
                         policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> TestTypeOut:
        data = self._prepare(v.TEST_TYPE, data)

        def body(tx: Transaction):
            test_type, university_id = self._schedule_child(tx.session, TestType, schedule_id, test_type_id)
            return self._update_node(tx, test_type, data, university_id, "TestType"), None

        self._write("update_test_type", body, ctx, policy, isolation)
        return self.loader.find_test_type(schedule_id, test_type_id)

    def delete_test_type(self, schedule_id: int, test_type_id: int, soft: bool = False,
                         ctx: Optional[OperationContext] = None,
                         policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None):
        def body(tx: Transaction):
            test_type, university_id = self._schedule_child(tx.session, TestType, schedule_id, test_type_id)
            return self._delete_node(tx, test_type, university_id, soft), None

        self._write("delete_test_type", body, ctx, policy, isolation)

    # -----------------------------------------------------------------------
    # 科目
    # -----------------------------------------------------------------------

    @staticmethod
    def _test_type_owner(db, test_type_id: int, university_id: Optional[int],
                         department_id: Optional[int], error=ParentNotFoundError) -> int:
        chain = crud.test_type_chain(db, test_type_id)
        if chain is None:
            raise error("TestType", test_type_id)
        if university_id is not None and chain[0] != university_id:
            raise error("TestType", test_type_id)
        if department_id is not None and chain[1] != department_id:
            raise error("TestType", test_type_id)
        return chain[0]

    def create_subject(self, university_id: int, department_id: int, data: SubjectCreate,
                       ctx: Optional[OperationContext] = None,
                       policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> SubjectOut:
        data = self._prepare(v.SUBJECT, data)
        test_type_id = data.test_type_id

        def body(tx: Transaction):
            db = tx.session
            self._test_type_owner(db, test_type_id, university_id, department_id)
            self._check_capacity(db, Subject, Subject.test_type_id, test_type_id, c.MAX_SUBJECTS, "subjects")
            subject = crud.build_entity(Subject, data)
            subject.test_type_id = test_type_id
            db.add(subject)
            db.flush()
            crud.recalculate_percentages(db, test_type_id)
            db.flush()
            return crud.collect_scope(db, university_id), subject.id

        subject_id = self._write("create_subject", body, ctx, policy, isolation)
        return self.loader.find_subject(test_type_id, subject_id, university_id, department_id)

    def _subject(self, db, university_id: int, department_id: int, subject_id: int) -> Subject:
        subject = crud.get_live(db, Subject, subject_id)
        if subject is None:
            raise NotFoundError("Subject", subject_id)
        self._test_type_owner(db, subject.test_type_id, university_id, department_id, NotFoundError)
        return subject

    def update_subject(self, university_id: int, department_id: int, subject_id: int, data: SubjectCreate,
                       ctx: Optional[OperationContext] = None,
                       policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> SubjectOut:
        """科目を更新する。test_type_id が変わる場合は同じ学部内の試験種別へ移動する"""
        data = self._prepare(v.SUBJECT, data)
        target_test_type_id = data.test_type_id

        def body(tx: Transaction):
            db = tx.session
            subject = self._subject(db, university_id, department_id, subject_id)
            crud.check_version(subject, data.version, "Subject")
            before = crud.collect_scope(db, university_id)
            source_test_type_id = subject.test_type_id
            if target_test_type_id != source_test_type_id:
                self._test_type_owner(db, target_test_type_id, university_id, department_id)
                self._check_capacity(db, Subject, Subject.test_type_id, target_test_type_id,
                                     c.MAX_SUBJECTS, "subjects")
                subject.test_type_id = target_test_type_id
            crud.apply_entity(subject, data)
            crud.touch(subject)
            db.flush()
            crud.recalculate_percentages(db, target_test_type_id)
            if target_test_type_id != source_test_type_id:
                crud.recalculate_percentages(db, source_test_type_id)
            db.flush()
            return before, None

        self._write("update_subject", body, ctx, policy, isolation)
        return self.loader.find_subject(target_test_type_id, subject_id, university_id, department_id)

    def delete_subject(self, university_id: int, department_id: int, subject_id: int, soft: bool = False,
                       ctx: Optional[OperationContext] = None,
                       policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None):
        def body(tx: Transaction):
            db = tx.session
            subject = self._subject(db, university_id, department_id, subject_id)
            test_type_id = subject.test_type_id
            scope = self._delete_node(tx, subject, university_id, soft)
            crud.recalculate_percentages(db, test_type_id)
            db.flush()
            return scope, None

        self._write("delete_subject", body, ctx, policy, isolation)

    def update_subjects_batch(self, test_type_id: int, subjects: List[SubjectIn],
                              university_id: Optional[int] = None, department_id: Optional[int] = None,
                              ctx: Optional[OperationContext] = None,
                              policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> List[SubjectOut]:
        """
        科目の一括 upsert

        SUBJECT_BATCH_SIZE 件ずつ反映した後、試験種別の全科目について配点比率を再計算する。
        書き込み側は試験種別 ID しか知らないため、コミット後は大学集約のキャッシュを丸ごと破棄する。
        """
        payload = self.sanitizer.sanitize_data([s.model_dump() for s in subjects])
        for item in payload:
            item["percentage"] = 0.0
        prepared = [SubjectIn.model_validate(item) for item in payload]
        self.validator.validate_subject_batch(prepared)

        def body(tx: Transaction):
            db = tx.session
            owner_id = self._test_type_owner(db, test_type_id, university_id, department_id, NotFoundError)
            crud.upsert_subjects(db, test_type_id, prepared)
            if crud.count_children(db, Subject, Subject.test_type_id, test_type_id) > c.MAX_SUBJECTS:
                raise ValidationError.single(
                    "subjects", f"subjectsは{c.MAX_SUBJECTS}件以下である必要があります", "TOO_MANY_ITEMS"
                )
            final = crud.recalculate_percentages(db, test_type_id)
            db.flush()
            crud.touch_university(db, owner_id)
            return None, [SubjectOut.model_validate(s) for s in final]

        result = self._write("update_subjects_batch", body, ctx, policy, isolation)
        logger.info("[Writer] batch applied to test type %s (%d subjects)", test_type_id, len(result))
        return result


# グローバルシングルトン
university_writer = UniversityWriter(TransactionRunner(SessionLocal), read_cache, university_loader)
