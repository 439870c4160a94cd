"""
University CRUD Operations

ローダーとライターが使う SQL をここにまとめる。
"""
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, load_only, object_session, selectinload

from app.core.errors import ConflictError, NotFoundError
from app.models.university import (
    AdmissionInfo,
    AdmissionSchedule,
    Department,
    Major,
    Subject,
    TestType,
    University,
)
from app.services.cache import CacheScope

HEADER = ("id", "version", "created_at", "updated_at")

COLUMNS = {
    University: HEADER + ("name",),
    Department: HEADER + ("university_id", "name"),
    Major: HEADER + ("department_id", "name"),
    AdmissionSchedule: HEADER + ("major_id", "name", "display_order"),
    AdmissionInfo: HEADER + (
        "admission_schedule_id", "enrollment", "academic_year", "status", "valid_from", "valid_until"
    ),
    TestType: HEADER + ("admission_schedule_id", "name"),
    Subject: HEADER + ("test_type_id", "name", "score", "percentage", "display_order"),
}

# 書き込み時に入力からコピーする列と子コレクション
SCALARS = {
    University: ("name",),
    Department: ("name",),
    Major: ("name",),
    AdmissionSchedule: ("name", "display_order"),
    AdmissionInfo: ("enrollment", "academic_year", "status", "valid_from", "valid_until"),
    TestType: ("name",),
    Subject: ("name", "score", "percentage", "display_order"),
}

CHILDREN = {
    University: (("departments", Department),),
    Department: (("majors", Major),),
    Major: (("admission_schedules", AdmissionSchedule),),
    AdmissionSchedule: (("admission_infos", AdmissionInfo), ("test_types", TestType)),
    TestType: (("subjects", Subject),),
    AdmissionInfo: (),
    Subject: (),
}

SUBJECT_BATCH_SIZE = 1000

# 名前の入れ替え中に一時的に使う名前の接頭辞
RENAME_PREFIX = "~rename~"


def columns_of(model) -> list:
    return [getattr(model, name) for name in COLUMNS[model]]


def alive(model):
    return model.deleted_at.is_(None)


# ---------------------------------------------------------------------------
# ネストしたプリロード
# ---------------------------------------------------------------------------

def _children_option(relationship_attr, model, *nested):
    return selectinload(relationship_attr.and_(alive(model))).options(
        load_only(*columns_of(model)), *nested
    )


def subjects_option():
    return _children_option(TestType.subjects, Subject)


def test_types_option():
    return _children_option(AdmissionSchedule.test_types, TestType, subjects_option())


def admission_infos_option():
    return _children_option(AdmissionSchedule.admission_infos, AdmissionInfo)


def admission_schedules_option():
    return _children_option(
        Major.admission_schedules, AdmissionSchedule, admission_infos_option(), test_types_option()
    )


def majors_option():
    return _children_option(Department.majors, Major, admission_schedules_option())


def departments_option():
    return _children_option(University.departments, Department, majors_option())


def university_tree_query():
    """大学集約を全階層プリロードする SELECT 文"""
    return (
        select(University)
        .options(load_only(*columns_of(University)), departments_option())
        .where(alive(University))
        .order_by(University.name, University.id)
    )


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def search_query(query: str):
    """大学名・学部名・学科名のいずれかに部分一致する大学（大文字小文字を区別しない）"""
    pattern = _like_pattern(query)
    department_hits = select(Department.university_id).where(
        Department.name.ilike(pattern, escape="\\"), alive(Department)
    )
    major_hits = (
        select(Department.university_id)
        .join(Major, Major.department_id == Department.id)
        .where(Major.name.ilike(pattern, escape="\\"), alive(Major), alive(Department))
    )
    return university_tree_query().where(
        or_(
            University.name.ilike(pattern, escape="\\"),
            University.id.in_(department_hits),
            University.id.in_(major_hits),
        )
    )


def get_university_tree(db: Session, university_id: int) -> Optional[University]:
    return db.scalars(university_tree_query().where(University.id == university_id)).first()


def get_department_tree(db: Session, university_id: int, department_id: int) -> Optional[Department]:
    stmt = (
        select(Department)
        .join(University, Department.university_id == University.id)
        .options(load_only(*columns_of(Department)), majors_option())
        .where(
            Department.id == department_id,
            Department.university_id == university_id,
            alive(Department),
            alive(University),
        )
    )
    return db.scalars(stmt).first()


def get_major_tree(db: Session, department_id: int, major_id: int) -> Optional[Tuple[Major, int]]:
    """学科と所属大学 ID"""
    stmt = (
        select(Major, Department.university_id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .options(load_only(*columns_of(Major)), admission_schedules_option())
        .where(
            Major.id == major_id,
            Major.department_id == department_id,
            alive(Major),
            alive(Department),
            alive(University),
        )
    )
    return db.execute(stmt).first()


def get_admission_schedule_tree(db: Session, major_id: int, schedule_id: int) -> Optional[Tuple[AdmissionSchedule, int, int]]:
    """入試日程と所属大学 ID・学部 ID"""
    stmt = (
        select(AdmissionSchedule, Department.university_id, Major.department_id)
        .join(Major, AdmissionSchedule.major_id == Major.id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .options(
            load_only(*columns_of(AdmissionSchedule)),
            admission_infos_option(),
            test_types_option(),
        )
        .where(
            AdmissionSchedule.id == schedule_id,
            AdmissionSchedule.major_id == major_id,
            alive(AdmissionSchedule),
            alive(Major),
            alive(Department),
            alive(University),
        )
    )
    return db.execute(stmt).first()


def get_admission_info(db: Session, schedule_id: int, info_id: int) -> Optional[Tuple[AdmissionInfo, int, int]]:
    """入試情報と所属大学 ID・学部 ID"""
    stmt = (
        select(AdmissionInfo, Department.university_id, Major.department_id)
        .join(AdmissionSchedule, AdmissionInfo.admission_schedule_id == AdmissionSchedule.id)
        .join(Major, AdmissionSchedule.major_id == Major.id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .options(load_only(*columns_of(AdmissionInfo)))
        .where(
            AdmissionInfo.id == info_id,
            AdmissionInfo.admission_schedule_id == schedule_id,
            alive(AdmissionInfo),
            alive(AdmissionSchedule),
            alive(Major),
            alive(Department),
            alive(University),
        )
    )
    return db.execute(stmt).first()


def get_test_type_tree(db: Session, schedule_id: int, test_type_id: int) -> Optional[Tuple[TestType, int, int]]:
    """試験種別と所属大学 ID・学部 ID"""
    stmt = (
        select(TestType, Department.university_id, Major.department_id)
        .join(AdmissionSchedule, TestType.admission_schedule_id == AdmissionSchedule.id)
        .join(Major, AdmissionSchedule.major_id == Major.id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .options(load_only(*columns_of(TestType)), subjects_option())
        .where(
            TestType.id == test_type_id,
            TestType.admission_schedule_id == schedule_id,
            alive(TestType),
            alive(AdmissionSchedule),
            alive(Major),
            alive(Department),
            alive(University),
        )
    )
    return db.execute(stmt).first()


def get_subject(db: Session, test_type_id: int, subject_id: int) -> Optional[Tuple[Subject, int, int]]:
    """科目と所属大学 ID・学部 ID"""
    stmt = (
        select(Subject, Department.university_id, Major.department_id)
        .join(TestType, Subject.test_type_id == TestType.id)
        .join(AdmissionSchedule, TestType.admission_schedule_id == AdmissionSchedule.id)
        .join(Major, AdmissionSchedule.major_id == Major.id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .options(load_only(*columns_of(Subject)))
        .where(
            Subject.id == subject_id,
            Subject.test_type_id == test_type_id,
            alive(Subject),
            alive(TestType),
            alive(AdmissionSchedule),
            alive(Major),
            alive(Department),
            alive(University),
        )
    )
    return db.execute(stmt).first()


# ---------------------------------------------------------------------------
# 所有関係のたどり
# ---------------------------------------------------------------------------

def get_live(db: Session, model, entity_id: int):
    """論理削除されていないエンティティを主キーで取得"""
    obj = db.get(model, entity_id)
    if obj is None or obj.deleted_at is not None:
        return None
    return obj


def department_chain(db: Session, department_id: int) -> Optional[int]:
    """学部 → 大学 ID"""
    return db.scalar(
        select(Department.university_id)
        .join(University, Department.university_id == University.id)
        .where(Department.id == department_id, alive(Department), alive(University))
    )


def major_chain(db: Session, major_id: int) -> Optional[Tuple[int, int]]:
    """学科 → (大学 ID, 学部 ID)"""
    return db.execute(
        select(Department.university_id, Major.department_id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .where(Major.id == major_id, alive(Major), alive(Department), alive(University))
    ).first()


def schedule_chain(db: Session, schedule_id: int) -> Optional[Tuple[int, int, int]]:
    """入試日程 → (大学 ID, 学部 ID, 学科 ID)"""
    return db.execute(
        select(Department.university_id, Major.department_id, AdmissionSchedule.major_id)
        .join(Major, AdmissionSchedule.major_id == Major.id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .where(
            AdmissionSchedule.id == schedule_id,
            alive(AdmissionSchedule),
            alive(Major),
            alive(Department),
            alive(University),
        )
    ).first()


def test_type_chain(db: Session, test_type_id: int) -> Optional[Tuple[int, int, int, int]]:
    """試験種別 → (大学 ID, 学部 ID, 学科 ID, 入試日程 ID)"""
    return db.execute(
        select(
            Department.university_id,
            Major.department_id,
            AdmissionSchedule.major_id,
            TestType.admission_schedule_id,
        )
        .join(AdmissionSchedule, TestType.admission_schedule_id == AdmissionSchedule.id)
        .join(Major, AdmissionSchedule.major_id == Major.id)
        .join(Department, Major.department_id == Department.id)
        .join(University, Department.university_id == University.id)
        .where(
            TestType.id == test_type_id,
            alive(TestType),
            alive(AdmissionSchedule),
            alive(Major),
            alive(Department),
            alive(University),
        )
    ).first()


def test_type_id_of_subject(db: Session, subject_id: int) -> Optional[int]:
    return db.scalar(select(Subject.test_type_id).where(Subject.id == subject_id, alive(Subject)))


def collect_scope(db: Session, university_id: int) -> CacheScope:
    """大学から到達できる ID をすべて集める（論理削除済みも含む）"""
    department_ids = list(db.scalars(
        select(Department.id).where(Department.university_id == university_id)
    ))
    major_ids = list(db.scalars(
        select(Major.id).where(Major.department_id.in_(department_ids))
    )) if department_ids else []
    schedule_ids = list(db.scalars(
        select(AdmissionSchedule.id).where(AdmissionSchedule.major_id.in_(major_ids))
    )) if major_ids else []
    test_type_ids = list(db.scalars(
        select(TestType.id).where(TestType.admission_schedule_id.in_(schedule_ids))
    )) if schedule_ids else []
    return CacheScope(university_id, department_ids, major_ids, schedule_ids, test_type_ids)


def count_children(db: Session, model, parent_column, parent_id: int) -> int:
    """親に属する（論理削除されていない）子の件数"""
    return db.scalar(
        select(func.count(model.id)).where(parent_column == parent_id, alive(model))
    )


def touch(obj):
    """更新日時を書き換えて UPDATE を発生させ、バージョンを進める"""
    obj.updated_at = func.now()


def soft_delete(obj):
    obj.deleted_at = func.now()
    obj.updated_at = func.now()


# ---------------------------------------------------------------------------
# 集約の組み立てと差分適用
# ---------------------------------------------------------------------------

def build_entity(model, data):
    """入力モデルから ORM オブジェクトの木を組み立てる"""
    obj = model(**{name: getattr(data, name) for name in SCALARS[model]})
    for attr, child_model in CHILDREN[model]:
        items = getattr(data, attr, None) or []
        setattr(obj, attr, [build_entity(child_model, item) for item in items])
    return obj


def check_version(obj, expected: Optional[int], resource: Optional[str] = None):
    """入力のバージョンが現在値と違えば ConflictError"""
    if expected is not None and expected != obj.version:
        raise ConflictError(resource or type(obj).__name__, obj.id, expected, obj.version)


def touch_university(db: Session, university_id: int):
    """
    配下への書き込みで大学集約のバージョンを進める

    読み込んだバージョンとの比較はせず、行ロックの下で 1 つ加算する。
    同じ大学の別の学部などへの同時書き込みどうしは衝突しない。
    """
    db.execute(
        update(University)
        .where(University.id == university_id, alive(University))
        .values(version=University.version + 1, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )


def release_names(db: Session, model, renames: Sequence[Tuple[str, object]]):
    """
    兄弟同士で名前を入れ替える改名があれば、改名する行を一時名へ退避する

    (新しい名前, 既存行) の組を受け取る。退避は Core の UPDATE で行うためバージョンは進まず、
    最終的な名前は後続の flush で書き込まれる。
    """
    moving = [(name, target) for name, target in renames if target.name != name]
    held = {target.name for _, target in moving}
    if not any(name in held for name, _ in moving):
        return
    for _, target in moving:
        db.execute(
            update(model)
            .where(model.id == target.id)
            .values(name=f"{RENAME_PREFIX}{target.id}")
            .execution_options(synchronize_session=False)
        )


def apply_entity(obj, data):
    """
    既存オブジェクトに入力を反映する。子コレクションが None なら既存の子はそのまま

    子の反映は途中で flush することがあるため、自身の列は子の後に書き換える。
    """
    for attr, child_model in CHILDREN[type(obj)]:
        items = getattr(data, attr, None)
        if items is not None:
            reconcile_children(obj, attr, child_model, items)
    for name in SCALARS[type(obj)]:
        value = getattr(data, name)
        if getattr(obj, name) != value:
            setattr(obj, name, value)


def match_children(existing: Sequence, model, items: Sequence) -> list:
    """
    入力の各要素に対応する既存の子（なければ None）を返す

    id 指定を先に確定させ、id のない要素は残りの同名の子に対応付ける。
    対応付いた子のバージョンが入力と違えば ConflictError。
    """
    by_id = {child.id: child for child in existing}
    targets = [None] * len(items)
    claimed = set()
    for index, item in enumerate(items):
        if item.id is None:
            continue
        target = by_id.get(item.id)
        if target is None:
            raise NotFoundError(model.__name__, item.id)
        targets[index] = target
        claimed.add(target.id)

    if "name" in SCALARS[model]:
        by_name = {child.name: child for child in existing if child.id not in claimed}
        for index, item in enumerate(items):
            if item.id is None:
                targets[index] = by_name.pop(item.name, None)

    for item, target in zip(items, targets):
        if target is not None:
            check_version(target, item.version)
    return targets


def reconcile_children(owner, attr: str, model, items: Sequence):
    """
    子コレクションを入力に合わせる

    id が一致するものを更新し、id のないものは同名の既存子に対応付け、残りは新規作成する。
    入力に現れなかった既存の子は先に削除し、その名前を改名や新規作成で使えるようにする。
    """
    existing = list(getattr(owner, attr))
    targets = match_children(existing, model, items)
    kept_ids = {target.id for target in targets if target is not None}
    db = object_session(owner)

    if any(child.id not in kept_ids for child in existing):
        setattr(owner, attr, [child for child in existing if child.id in kept_ids])
        db.flush()
    if "name" in SCALARS[model]:
        release_names(db, model, [
            (item.name, target) for item, target in zip(items, targets) if target is not None
        ])

    result = []
    for item, target in zip(items, targets):
        if target is None:
            target = build_entity(model, item)
        else:
            apply_entity(target, item)
            if target.deleted_at is not None:
                target.deleted_at = None
        result.append(target)

    setattr(owner, attr, result)


# ---------------------------------------------------------------------------
# 配点比率
# ---------------------------------------------------------------------------

def compute_percentages(scores: Iterable[float]) -> List[float]:
    """各配点の比率 (100 * score / Σscore)。合計が 0 ならすべて 0"""
    scores = list(scores)
    total = sum(scores)
    if total <= 0:
        return [0.0 for _ in scores]
    return [100.0 * score / total for score in scores]


def live_subjects(db: Session, test_type_id: int) -> List[Subject]:
    return list(db.scalars(
        select(Subject)
        .where(Subject.test_type_id == test_type_id, alive(Subject))
        .order_by(Subject.display_order, Subject.id)
    ))


def recalculate_percentages(db: Session, test_type_id: int) -> List[Subject]:
    """試験種別の科目の配点比率を再計算する"""
    subjects = live_subjects(db, test_type_id)
    for subject, percentage in zip(subjects, compute_percentages(s.score for s in subjects)):
        if subject.percentage != percentage:
            subject.percentage = percentage
    return subjects


def upsert_subjects(db: Session, test_type_id: int, items: Sequence) -> int:
    """
    科目を upsert する（SUBJECT_BATCH_SIZE 件ずつ）

    id があれば主キーで、なければ同じ試験種別内の同名の科目に対応付ける。
    id が別の試験種別の科目を指している場合は NotFound、バージョンが古ければ Conflict とする。
    """
    written = 0
    for start in range(0, len(items), SUBJECT_BATCH_SIZE):
        chunk = items[start:start + SUBJECT_BATCH_SIZE]
        ids = [item.id for item in chunk if item.id is not None]
        names = [item.name for item in chunk if item.id is None]
        by_id, by_name = {}, {}
        if ids:
            by_id = {
                s.id: s for s in db.scalars(
                    select(Subject).where(Subject.id.in_(ids), Subject.test_type_id == test_type_id)
                )
            }
        if names:
            by_name = {
                s.name: s for s in db.scalars(
                    select(Subject).where(Subject.name.in_(names), Subject.test_type_id == test_type_id)
                ) if s.id not in ids
            }

        targets = []
        for item in chunk:
            if item.id is not None:
                subject = by_id.get(item.id)
                if subject is None:
                    raise NotFoundError("Subject", item.id)
            else:
                subject = by_name.pop(item.name, None)
            if subject is not None:
                check_version(subject, item.version)
            targets.append(subject)

        release_names(db, Subject, [
            (item.name, subject) for item, subject in zip(chunk, targets) if subject is not None
        ])
        for item, subject in zip(chunk, targets):
            if subject is None:
                subject = build_entity(Subject, item)
                subject.test_type_id = test_type_id
                db.add(subject)
            else:
                if subject.deleted_at is not None:
                    subject.deleted_at = None
                apply_entity(subject, item)
            written += 1
        db.flush()
    return written
