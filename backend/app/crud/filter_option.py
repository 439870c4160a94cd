"""
Filter Option CRUD Operations
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.filter_option import FilterOption


def get_all_filter_options(db: Session) -> List[FilterOption]:
    """全フィルターオプション（カテゴリ・表示順）"""
    return db.query(FilterOption).filter(
        FilterOption.deleted_at.is_(None)
    ).order_by(FilterOption.category, FilterOption.display_order, FilterOption.id).all()


def get_filter_options_by_category(db: Session, category: str) -> List[FilterOption]:
    """指定カテゴリのフィルターオプション"""
    return db.query(FilterOption).filter(
        FilterOption.category == category,
        FilterOption.deleted_at.is_(None),
    ).order_by(FilterOption.display_order, FilterOption.id).all()


def get_filter_option(db: Session, option_id: int) -> Optional[FilterOption]:
    return db.query(FilterOption).filter(
        FilterOption.id == option_id,
        FilterOption.deleted_at.is_(None),
    ).first()


def create_filter_option(db: Session, category: str, name: str, display_order: int = 0,
                         parent_id: Optional[int] = None) -> FilterOption:
    """フィルターオプションを作成する（コミットは呼び出し側）"""
    db_option = FilterOption(
        category=category,
        name=name,
        display_order=display_order,
        parent_id=parent_id,
    )
    db.add(db_option)
    db.flush()
    return db_option
