"""
University Loader - 大学集約の読み取り

キャッシュを経由した読み取り（リードスルー）。ミス時はネストしたプリロードで
必要な列だけを読み、出力モデルに変換してからキャッシュに格納する。
"""
import logging
from typing import Callable, List, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.context import OperationContext
from app.core.database import SessionLocal
from app.core.errors import AppError, NotFoundError, translate_db_error
from app.crud import university as crud
from app.schemas.university import (
    AdmissionInfoOut,
    AdmissionScheduleOut,
    DepartmentOut,
    MajorOut,
    SubjectOut,
    TestTypeOut,
    UniversityOut,
)
from app.services import cache as keys
from app.services.cache import ReadCache, read_cache

logger = logging.getLogger(__name__)

FIND_ALL_BATCH_SIZE = 100


class Located(NamedTuple):
    """キャッシュに格納する値と、その所属大学・学部"""
    value: object
    university_id: Optional[int] = None
    department_id: Optional[int] = None

    def owned_by(self, university_id: Optional[int], department_id: Optional[int]) -> bool:
        if university_id is not None and university_id != self.university_id:
            return False
        if department_id is not None and department_id != self.department_id:
            return False
        return True


class UniversityLoader:
    def __init__(self, session_factory, cache: ReadCache, read_timeout: Optional[float] = None,
                 search_ttl: Optional[float] = None):
        settings = get_settings()
        self.session_factory = session_factory
        self.cache = cache
        self.read_timeout = settings.READ_TIMEOUT if read_timeout is None else read_timeout
        self.search_ttl = settings.CACHE_SEARCH_TTL if search_ttl is None else search_ttl

    def _context(self, ctx: Optional[OperationContext], operation: str) -> OperationContext:
        return ctx or OperationContext(self.read_timeout, operation)

    def read_through(self, key: str, ctx: OperationContext, load: Callable, ttl: Optional[float] = None):
        """キャッシュを引き、なければ load(db) の結果を格納して返す。None は格納しない"""
        ctx.check()
        value, present = self.cache.get(key)
        if present:
            return value

        generation = self.cache.generation
        db = self.session_factory()
        try:
            value = load(db)
        except AppError:
            raise
        except SQLAlchemyError as exc:
            logger.error("[Loader] %s failed: %s", ctx.operation, exc)
            raise translate_db_error(exc, ctx.operation) from exc
        finally:
            db.close()

        ctx.check()
        if value is not None:
            self.cache.set(key, value, ttl, generation)
        return value

    # -----------------------------------------------------------------------
    # 大学
    # -----------------------------------------------------------------------

    def find_all(self, ctx: Optional[OperationContext] = None) -> List[UniversityOut]:
        """全大学（名前順）。FIND_ALL_BATCH_SIZE 件ずつ読み込む"""
        ctx = self._context(ctx, "find_all")

        def load(db):
            items = []
            stmt = crud.university_tree_query().execution_options(yield_per=FIND_ALL_BATCH_SIZE)
            for partition in db.scalars(stmt).partitions():
                ctx.check()
                items.extend(UniversityOut.model_validate(u) for u in partition)
            return tuple(items)

        return list(self.read_through(keys.ALL_UNIVERSITIES, ctx, load))

    def find_by_id(self, university_id: int, ctx: Optional[OperationContext] = None) -> UniversityOut:
        ctx = self._context(ctx, "find_by_id")

        def load(db):
            university = crud.get_university_tree(db, university_id)
            return UniversityOut.model_validate(university) if university is not None else None

        result = self.read_through(keys.university_key(university_id), ctx, load)
        if result is None:
            raise NotFoundError("University", university_id)
        return result

    def search(self, query: str, ctx: Optional[OperationContext] = None) -> List[UniversityOut]:
        """大学名・学部名・学科名の部分一致検索"""
        ctx = self._context(ctx, "search")
        query = (query or "").strip()
        if not query:
            return self.find_all(ctx)

        def load(db):
            return tuple(UniversityOut.model_validate(u) for u in db.scalars(crud.search_query(query)))

        return list(self.read_through(keys.search_key(query), ctx, load, ttl=self.search_ttl))

    # -----------------------------------------------------------------------
    # 配下のエンティティ
    # -----------------------------------------------------------------------

    def find_department(self, university_id: int, department_id: int,
                        ctx: Optional[OperationContext] = None) -> DepartmentOut:
        ctx = self._context(ctx, "find_department")

        def load(db):
            department = crud.get_department_tree(db, university_id, department_id)
            return DepartmentOut.model_validate(department) if department is not None else None

        result = self.read_through(keys.department_key(university_id, department_id), ctx, load)
        if result is None:
            raise NotFoundError("Department", department_id)
        return result

    def find_major(self, department_id: int, major_id: int, university_id: Optional[int] = None,
                   ctx: Optional[OperationContext] = None) -> MajorOut:
        ctx = self._context(ctx, "find_major")

        def load(db):
            row = crud.get_major_tree(db, department_id, major_id)
            if row is None:
                return None
            major, owner_university_id = row
            return Located(MajorOut.model_validate(major), owner_university_id, department_id)

        return self._located(keys.major_key(department_id, major_id), ctx, load,
                             "Major", major_id, university_id)

    def find_admission_schedule(self, major_id: int, schedule_id: int,
                                university_id: Optional[int] = None, department_id: Optional[int] = None,
                                ctx: Optional[OperationContext] = None) -> AdmissionScheduleOut:
        ctx = self._context(ctx, "find_admission_schedule")

        def load(db):
            row = crud.get_admission_schedule_tree(db, major_id, schedule_id)
            if row is None:
                return None
            schedule, owner_university_id, owner_department_id = row
            return Located(AdmissionScheduleOut.model_validate(schedule), owner_university_id, owner_department_id)

        return self._located(keys.admission_schedule_key(major_id, schedule_id), ctx, load,
                             "AdmissionSchedule", schedule_id, university_id, department_id)

    def find_admission_info(self, schedule_id: int, info_id: int,
                            ctx: Optional[OperationContext] = None) -> AdmissionInfoOut:
        ctx = self._context(ctx, "find_admission_info")

        def load(db):
            row = crud.get_admission_info(db, schedule_id, info_id)
            if row is None:
                return None
            info, owner_university_id, owner_department_id = row
            return Located(AdmissionInfoOut.model_validate(info), owner_university_id, owner_department_id)

        return self._located(keys.admission_info_key(schedule_id, info_id), ctx, load,
                             "AdmissionInfo", info_id)

    def find_test_type(self, schedule_id: int, test_type_id: int,
                       ctx: Optional[OperationContext] = None) -> TestTypeOut:
        ctx = self._context(ctx, "find_test_type")

        def load(db):
            row = crud.get_test_type_tree(db, schedule_id, test_type_id)
            if row is None:
                return None
            test_type, owner_university_id, owner_department_id = row
            return Located(TestTypeOut.model_validate(test_type), owner_university_id, owner_department_id)

        return self._located(keys.test_type_key(schedule_id, test_type_id), ctx, load,
                             "TestType", test_type_id)

    def find_subject(self, test_type_id: int, subject_id: int, university_id: Optional[int] = None,
                     department_id: Optional[int] = None,
                     ctx: Optional[OperationContext] = None) -> SubjectOut:
        ctx = self._context(ctx, "find_subject")

        def load(db):
            row = crud.get_subject(db, test_type_id, subject_id)
            if row is None:
                return None
            subject, owner_university_id, owner_department_id = row
            return Located(SubjectOut.model_validate(subject), owner_university_id, owner_department_id)

        return self._located(keys.subject_key(test_type_id, subject_id), ctx, load,
                             "Subject", subject_id, university_id, department_id)

    def find_department_subject(self, university_id: int, department_id: int, subject_id: int,
                                ctx: Optional[OperationContext] = None) -> SubjectOut:
        """学部配下の科目。所属する試験種別を引いてから find_subject で読む"""
        ctx = self._context(ctx, "find_department_subject")
        ctx.check()
        db = self.session_factory()
        try:
            test_type_id = crud.test_type_id_of_subject(db, subject_id)
        except SQLAlchemyError as exc:
            raise translate_db_error(exc, ctx.operation) from exc
        finally:
            db.close()
        if test_type_id is None:
            raise NotFoundError("Subject", subject_id)
        return self.find_subject(test_type_id, subject_id, university_id, department_id, ctx)

    def _located(self, key: str, ctx: OperationContext, load: Callable, resource: str, resource_id: int,
                 university_id: Optional[int] = None, department_id: Optional[int] = None):
        located = self.read_through(key, ctx, load)
        if located is None or not located.owned_by(university_id, department_id):
            raise NotFoundError(resource, resource_id)
        return located.value


# グローバルシングルトン
university_loader = UniversityLoader(SessionLocal, read_cache)
