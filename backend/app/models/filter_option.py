"""
Filter Option Model - フィルターオプション

大学集約とは独立したカテゴリ別の参照値。都道府県→地方、小分類→分類のように自己参照で階層を持つ。
"""
from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String

from app.core.database import Base
from app.models.constants import FILTER_CATEGORIES, MAX_FILTER_DISPLAY_ORDER
from app.models.university import EntityMixin

_CATEGORY_LIST = ", ".join(f"'{c}'" for c in FILTER_CATEGORIES)


class FilterOption(EntityMixin, Base):
    """フィルターオプション"""
    __tablename__ = "filter_options"

    category = Column(String(20), nullable=False, index=True, comment="カテゴリ")
    name = Column(String(50), nullable=False, comment="名前")
    display_order = Column(Integer, nullable=False, default=0, index=True, comment="表示順")
    parent_id = Column(Integer, ForeignKey("filter_options.id", ondelete="CASCADE"), nullable=True, index=True)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint(f"category IN ({_CATEGORY_LIST})", name="ck_filter_category"),
        CheckConstraint("name <> ''", name="ck_filter_name"),
        CheckConstraint(
            f"display_order >= 0 AND display_order <= {MAX_FILTER_DISPLAY_ORDER}",
            name="ck_filter_display_order",
        ),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<FilterOption({self.category} {self.name})>"
