"""
Aggregate Validator - 大学集約のバリデーション

集約を深さ優先でたどり、最初の違反で止まらずにすべての違反をフィールドパス付きで集める。
I/O もロックも持たない純粋な処理なので、複数リクエストから同時に呼んでよい。
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.errors import FieldError, ValidationError
from app.models import constants as c

UNIVERSITY = "university"
DEPARTMENT = "department"
MAJOR = "major"
ADMISSION_SCHEDULE = "admission_schedule"
ADMISSION_INFO = "admission_info"
TEST_TYPE = "test_type"
SUBJECT = "subject"


@dataclass(frozen=True)
class Rule:
    """1 つの検証ルール: 対象属性・述語・エラーテンプレート"""
    field: str
    attr: str
    predicate: Callable[[Any], bool]
    message: str
    code: str
    skip_none: bool = False

    def field_path(self, prefix: str) -> str:
        return _join(prefix, self.field)


@dataclass(frozen=True)
class ChildSpec:
    """子コレクションの定義（件数上限と名前の一意性）"""
    field: str
    attr: str
    kind: str
    max_items: Optional[int] = None
    unique_names: bool = False


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def _valid_name(value) -> bool:
    if not isinstance(value, str):
        return False
    return c.NAME_MIN_LENGTH <= len(value.strip()) <= c.NAME_MAX_LENGTH


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _version_rule() -> Rule:
    return Rule(
        "version", "version",
        lambda v: _is_int(v) and v >= 1,
        "バージョンは1以上である必要があります", "INVALID_VERSION",
        skip_none=True,
    )


def _name_rule() -> Rule:
    return Rule(
        "name", "name", _valid_name,
        f"名前は{c.NAME_MIN_LENGTH}-{c.NAME_MAX_LENGTH}文字である必要があります", "INVALID_NAME",
    )


def _display_order_rule() -> Rule:
    return Rule(
        "displayOrder", "display_order",
        lambda v: _is_int(v) and v >= 0,
        "表示順は0以上の整数である必要があります", "INVALID_DISPLAY_ORDER",
    )


@lru_cache(maxsize=None)
def build_rules() -> Dict[str, Tuple[Tuple[Rule, ...], Tuple[ChildSpec, ...]]]:
    """エンティティ種別ごとのルール表を一度だけ組み立てる"""
    header = (_version_rule(),)
    return {
        UNIVERSITY: (
            header + (_name_rule(),),
            (ChildSpec("departments", "departments", DEPARTMENT, c.MAX_DEPARTMENTS, True),),
        ),
        DEPARTMENT: (
            header + (_name_rule(),),
            (ChildSpec("majors", "majors", MAJOR, c.MAX_MAJORS, True),),
        ),
        MAJOR: (
            header + (_name_rule(),),
            (ChildSpec("admissionSchedules", "admission_schedules", ADMISSION_SCHEDULE),),
        ),
        ADMISSION_SCHEDULE: (
            header + (_name_rule(), _display_order_rule()),
            (
                ChildSpec("admissionInfos", "admission_infos", ADMISSION_INFO),
                ChildSpec("testTypes", "test_types", TEST_TYPE),
            ),
        ),
        ADMISSION_INFO: (
            header + (
                Rule(
                    "enrollment", "enrollment",
                    lambda v: _is_int(v) and v > 0,
                    "募集人数は1以上である必要があります", "INVALID_ENROLLMENT",
                ),
                Rule(
                    "academicYear", "academic_year",
                    lambda v: _is_int(v) and c.MIN_ACADEMIC_YEAR <= v <= c.MAX_ACADEMIC_YEAR,
                    f"年度は{c.MIN_ACADEMIC_YEAR}-{c.MAX_ACADEMIC_YEAR}の範囲である必要があります",
                    "INVALID_ACADEMIC_YEAR",
                ),
                Rule(
                    "status", "status",
                    lambda v: v in c.ADMISSION_STATUSES,
                    "ステータスが不正です", "INVALID_STATUS",
                ),
            ),
            (),
        ),
        TEST_TYPE: (
            header + (_name_rule(),),
            (ChildSpec("subjects", "subjects", SUBJECT, c.MAX_SUBJECTS, True),),
        ),
        SUBJECT: (
            header + (
                _name_rule(),
                Rule(
                    "score", "score",
                    lambda v: _is_number(v) and v >= 0,
                    "配点は0以上である必要があります", "INVALID_SCORE",
                ),
                Rule(
                    "percentage", "percentage",
                    lambda v: _is_number(v) and 0 <= v <= 100,
                    "配点比率は0-100の範囲である必要があります", "INVALID_PERCENTAGE",
                ),
                _display_order_rule(),
            ),
            (),
        ),
    }


class AggregateValidator:
    """大学集約バリデータ。入力モデルと出力モデルのどちらも検証できる"""

    def collect_errors(self, kind: str, node: Any, path: str = "") -> List[FieldError]:
        errors: List[FieldError] = []
        self._walk(kind, node, path, errors)
        return errors

    def validate(self, kind: str, node: Any, path: str = ""):
        errors = self.collect_errors(kind, node, path)
        if errors:
            raise ValidationError(errors)

    def validate_university(self, node: Any):
        self.validate(UNIVERSITY, node)

    def _walk(self, kind: str, node: Any, path: str, errors: List[FieldError]):
        rules, children = build_rules()[kind]
        for rule in rules:
            value = getattr(node, rule.attr, None)
            if value is None and rule.skip_none:
                continue
            if not rule.predicate(value):
                errors.append(FieldError(rule.field_path(path), rule.message, rule.code))

        if kind == ADMISSION_INFO:
            self._check_period(node, path, errors)

        for child in children:
            items = getattr(node, child.attr, None) or []
            self._walk_collection(child, items, _join(path, child.field), errors)

        if kind == TEST_TYPE:
            self._check_percentages(getattr(node, "subjects", None) or [], _join(path, "subjects"), errors)

    def _walk_collection(self, child: ChildSpec, items, child_path: str, errors: List[FieldError]):
        if child.max_items is not None and len(items) > child.max_items:
            errors.append(FieldError(
                child_path,
                f"{child.field}は{child.max_items}件以下である必要があります",
                "TOO_MANY_ITEMS",
            ))
        if child.unique_names:
            self._check_unique_names(items, child_path, errors)
        for index, item in enumerate(items):
            self._walk(child.kind, item, f"{child_path}[{index}]", errors)

    def validate_subject_batch(self, subjects, path: str = "subjects"):
        """科目の一括更新。件数・名前の重複・各科目の値を検証する"""
        errors: List[FieldError] = []
        child = ChildSpec("subjects", "subjects", SUBJECT, c.MAX_SUBJECTS, True)
        self._walk_collection(child, list(subjects), path, errors)
        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _check_unique_names(items, child_path: str, errors: List[FieldError]):
        seen = set()
        for index, item in enumerate(items):
            name = getattr(item, "name", None)
            if not isinstance(name, str):
                continue
            key = name.strip()
            if key in seen:
                errors.append(FieldError(
                    f"{child_path}[{index}].name", "名前が重複しています", "DUPLICATE_NAME"
                ))
            seen.add(key)

    @staticmethod
    def _check_period(node, path: str, errors: List[FieldError]):
        valid_from = getattr(node, "valid_from", None)
        valid_until = getattr(node, "valid_until", None)
        if valid_from is not None and valid_until is not None and valid_from > valid_until:
            errors.append(FieldError(
                _join(path, "validUntil"),
                "有効終了日は有効開始日以降である必要があります",
                "INVALID_PERIOD",
            ))

    @staticmethod
    def _check_percentages(subjects, subjects_path: str, errors: List[FieldError]):
        if not subjects:
            return
        scores = [getattr(s, "score", None) for s in subjects]
        if not all(_is_number(score) and score >= 0 for score in scores):
            return
        total = sum(scores)
        if total <= 0:
            return

        tolerance = c.PERCENTAGE_TOLERANCE
        percentage_sum = 0.0
        for index, (subject, score) in enumerate(zip(subjects, scores)):
            percentage = getattr(subject, "percentage", None)
            if not _is_number(percentage):
                return
            percentage_sum += percentage
            expected = 100.0 * score / total
            if abs(percentage - expected) > tolerance:
                errors.append(FieldError(
                    f"{subjects_path}[{index}].percentage",
                    f"配点比率は{expected:.2f}である必要があります",
                    "PERCENTAGE_MISMATCH",
                ))
        if abs(percentage_sum - 100.0) > tolerance:
            errors.append(FieldError(
                subjects_path, "配点比率の合計は100である必要があります", "PERCENTAGE_SUM"
            ))

    # -----------------------------------------------------------------------
    # フィルターオプション
    # -----------------------------------------------------------------------

    def collect_filter_option_errors(self, option: Any, parent_category: Optional[str] = None) -> List[FieldError]:
        errors: List[FieldError] = []
        category = getattr(option, "category", None)
        if category not in c.FILTER_CATEGORIES:
            errors.append(FieldError("category", "カテゴリは有効な値である必要があります", "INVALID_CATEGORY"))

        display_order = getattr(option, "display_order", None)
        if not (_is_int(display_order) and 0 <= display_order <= c.MAX_FILTER_DISPLAY_ORDER):
            errors.append(FieldError(
                "displayOrder",
                f"表示順は0-{c.MAX_FILTER_DISPLAY_ORDER}の範囲である必要があります",
                "INVALID_DISPLAY_ORDER",
            ))

        name = getattr(option, "name", None)
        if category in c.FILTER_NAME_LENGTHS:
            low, high = c.FILTER_NAME_LENGTHS[category]
            length = len(name) if isinstance(name, str) else 0
            if not low <= length <= high:
                message = (f"名前は{low}文字である必要があります" if low == high
                           else f"名前は{low}-{high}文字である必要があります")
                errors.append(FieldError("name", message, "INVALID_NAME"))

        if parent_category is not None and c.FILTER_PARENT_CATEGORIES.get(category) != parent_category:
            errors.append(FieldError("parentId", "親子カテゴリの組み合わせが不正です", "INVALID_PARENT_CATEGORY"))
        return errors

    def validate_filter_option(self, option: Any, parent_category: Optional[str] = None):
        errors = self.collect_filter_option_errors(option, parent_category)
        if errors:
            raise ValidationError(errors)


validator = AggregateValidator()
