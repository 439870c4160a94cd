"""
Filter Option Service - フィルターオプションの読み書き

カテゴリ単位でキャッシュし、作成時はフィルターオプションのキーをまとめて破棄する。
"""
import logging
from typing import List, Optional

from app.core.context import OperationContext
from app.core.database import SessionLocal
from app.core.errors import ParentNotFoundError
from app.crud import filter_option as crud
from app.schemas.filter_option import FilterOptionCreate, FilterOptionOut
from app.services import cache as keys
from app.services.cache import ReadCache, read_cache
from app.services.loader import UniversityLoader, university_loader
from app.services.sanitizer import Sanitizer, sanitizer as default_sanitizer
from app.services.transaction import RetryPolicy, Transaction, TransactionRunner
from app.services.validator import AggregateValidator, validator as default_validator

logger = logging.getLogger(__name__)


class FilterOptionService:
    def __init__(self, runner: TransactionRunner, cache: ReadCache, loader: UniversityLoader,
                 sanitizer: Optional[Sanitizer] = None, validator: Optional[AggregateValidator] = None):
        self.runner = runner
        self.cache = cache
        self.loader = loader
        self.sanitizer = sanitizer or default_sanitizer
        self.validator = validator or default_validator

    def list(self, category: Optional[str] = None, ctx: Optional[OperationContext] = None) -> List[FilterOptionOut]:
        """カテゴリ指定なしなら全件（カテゴリ・表示順）"""
        ctx = ctx or OperationContext(self.loader.read_timeout, "list_filter_options")

        def load(db):
            if category:
                options = crud.get_filter_options_by_category(db, category)
            else:
                options = crud.get_all_filter_options(db)
            return tuple(FilterOptionOut.model_validate(o) for o in options)

        return list(self.loader.read_through(keys.filter_options_key(category), ctx, load))

    def create(self, data: FilterOptionCreate, ctx: Optional[OperationContext] = None,
               policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None) -> FilterOptionOut:
        self.runner.check_writable("create_filter_option")
        data = type(data).model_validate(self.sanitizer.sanitize_data(data.model_dump()))
        if data.parent_id is None:
            self.validator.validate_filter_option(data)

        def body(tx: Transaction):
            db = tx.session
            if data.parent_id is not None:
                parent = crud.get_filter_option(db, data.parent_id)
                if parent is None:
                    raise ParentNotFoundError("FilterOption", data.parent_id)
                self.validator.validate_filter_option(data, parent.category)
            option = crud.create_filter_option(
                db, data.category, data.name, data.display_order, data.parent_id
            )
            return FilterOptionOut.model_validate(option)

        ctx = ctx or OperationContext(self.runner.timeout, "create_filter_option")
        result = self.runner.run(body, ctx, policy=policy, isolation=isolation, operation="create_filter_option")
        self.cache.delete_prefix(keys.FILTER_OPTIONS)
        logger.info("[Writer] filter option %s/%s created", result.category, result.name)
        return result


# グローバルシングルトン
filter_option_service = FilterOptionService(TransactionRunner(SessionLocal), read_cache, university_loader)
