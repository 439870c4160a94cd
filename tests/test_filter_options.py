"""
Filter Option Service Tests
"""
import pytest

from app.core.errors import ParentNotFoundError, ValidationError
from app.schemas.filter_option import FilterOptionCreate
from app.services import cache as keys


def option(category, name, display_order=0, parent_id=None):
    return FilterOptionCreate(category=category, name=name, display_order=display_order, parent_id=parent_id)


class TestCreate:

    def test_create_root_option(self, filter_service):
        created = filter_service.create(option("REGION", "関東", 1))
        assert created.id >= 1
        assert created.version == 1
        assert created.parent_id is None

    def test_name_is_sanitized(self, filter_service):
        created = filter_service.create(option("ACADEMIC_FIELD", "<b>工学</b>"))
        assert created.name == "工学"

    def test_child_with_matching_parent_category(self, filter_service):
        region = filter_service.create(option("REGION", "近畿"))
        prefecture = filter_service.create(option("PREFECTURE", "大阪府", parent_id=region.id))
        assert prefecture.parent_id == region.id

    def test_child_with_wrong_parent_category(self, filter_service):
        classification = filter_service.create(option("CLASSIFICATION", "国立"))
        with pytest.raises(ValidationError) as exc_info:
            filter_service.create(option("PREFECTURE", "京都府", parent_id=classification.id))
        assert exc_info.value.codes_at("parentId") == ["INVALID_PARENT_CATEGORY"]

    def test_missing_parent(self, filter_service):
        with pytest.raises(ParentNotFoundError):
            filter_service.create(option("PREFECTURE", "東京都", parent_id=999))

    @pytest.mark.parametrize("data, field", [
        (option("COLOR", "赤"), "category"),
        (option("SCHEDULE", "前期"), "name"),
        (option("REGION", "関東", 1000), "displayOrder"),
    ])
    def test_invalid_option(self, filter_service, data, field):
        with pytest.raises(ValidationError) as exc_info:
            filter_service.create(data)
        assert [e.field_path for e in exc_info.value.errors] == [field]


class TestList:

    def test_list_by_category_is_ordered(self, filter_service):
        filter_service.create(option("REGION", "九州", 3))
        filter_service.create(option("REGION", "関東", 1))
        filter_service.create(option("CLASSIFICATION", "私立"))
        assert [o.name for o in filter_service.list("REGION")] == ["関東", "九州"]
        assert len(filter_service.list()) == 3

    def test_create_invalidates_cached_lists(self, filter_service, cache):
        filter_service.create(option("REGION", "関東"))
        filter_service.list("REGION")
        filter_service.list()
        assert keys.filter_options_key("REGION") in cache.keys()

        filter_service.create(option("REGION", "東北"))
        assert not [k for k in cache.keys() if k.startswith(keys.FILTER_OPTIONS)]
        assert len(filter_service.list("REGION")) == 2

    def test_university_writes_leave_filter_cache_alone(self, filter_service, writer, cache):
        from app.schemas import university as schemas

        filter_service.create(option("REGION", "関東"))
        filter_service.list("REGION")
        writer.create_university(schemas.UniversityIn(name="筑波大学"))
        assert keys.filter_options_key("REGION") in cache.keys()
