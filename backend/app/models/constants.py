"""
Schema Constants - スキーマ定数

モデル・バリデータ・ライターで共有する上限値や列挙値。
"""

NAME_MIN_LENGTH = 1
NAME_MAX_LENGTH = 100

MAX_DEPARTMENTS = 50
MAX_MAJORS = 30
MAX_SUBJECTS = 20

MIN_ACADEMIC_YEAR = 2000
MAX_ACADEMIC_YEAR = 2100

PERCENTAGE_TOLERANCE = 0.01

ADMISSION_STATUSES = ("active", "archived", "draft", "published")
DEFAULT_ADMISSION_STATUS = "draft"

# フィルターオプション
FILTER_CATEGORIES = (
    "REGION",
    "PREFECTURE",
    "SCHEDULE",
    "ACADEMIC_FIELD",
    "CLASSIFICATION",
    "SUB_CLASSIFICATION",
)

# カテゴリ -> 名前の文字数 (最小, 最大)
FILTER_NAME_LENGTHS = {
    "REGION": (1, 3),
    "PREFECTURE": (1, 3),
    "SCHEDULE": (1, 1),
    "ACADEMIC_FIELD": (1, 50),
    "CLASSIFICATION": (1, 10),
    "SUB_CLASSIFICATION": (1, 50),
}

# 子カテゴリ -> 親として許可されるカテゴリ。ここにないカテゴリは親を持てない
FILTER_PARENT_CATEGORIES = {
    "PREFECTURE": "REGION",
    "SUB_CLASSIFICATION": "CLASSIFICATION",
}

MAX_FILTER_DISPLAY_ORDER = 999
