"""
University Loader Tests
"""
import pytest

from app.core.context import OperationContext
from app.core.errors import NotFoundError, OperationCancelledError
from app.schemas import university as schemas
from app.services import cache as keys
from app.services import loader as loader_module

import factories


@pytest.fixture
def seeded(writer):
    return [
        writer.create_university(schemas.UniversityIn(
            name="Tokyo Institute",
            departments=[schemas.DepartmentIn(name="Engineering", majors=[schemas.MajorIn(name="Robotics")])],
        )),
        writer.create_university(schemas.UniversityIn(
            name="京都大学",
            departments=[schemas.DepartmentIn(name="理学部", majors=[schemas.MajorIn(name="物理学科")])],
        )),
        writer.create_university(schemas.UniversityIn(name="Aichi University")),
    ]


class TestFindAll:

    def test_sorted_by_name(self, loader, seeded):
        assert [u.name for u in loader.find_all()] == ["Aichi University", "Tokyo Institute", "京都大学"]

    def test_second_call_is_served_from_cache(self, loader, cache, seeded):
        loader.find_all()
        hits = cache.stats()["hits"]
        loader.find_all()
        assert cache.stats()["hits"] == hits + 1

    def test_reads_in_batches(self, writer, loader, monkeypatch):
        monkeypatch.setattr(loader_module, "FIND_ALL_BATCH_SIZE", 2)
        for i in range(5):
            writer.create_university(schemas.UniversityIn(name=f"大学{i}"))
        assert [u.name for u in loader.find_all()] == [f"大学{i}" for i in range(5)]

    def test_returned_list_is_a_copy(self, loader, seeded):
        first = loader.find_all()
        first.clear()
        assert len(loader.find_all()) == 3

    def test_cancelled_context(self, loader):
        ctx = OperationContext(5, "find_all")
        ctx.cancel()
        with pytest.raises(OperationCancelledError):
            loader.find_all(ctx)


class TestSearch:

    @pytest.mark.parametrize("query, expected", [
        ("tokyo", ["Tokyo Institute"]),
        ("ENGINEER", ["Tokyo Institute"]),
        ("robot", ["Tokyo Institute"]),
        ("物理", ["京都大学"]),
        ("university", ["Aichi University"]),
        ("none", []),
    ])
    def test_substring_match(self, loader, seeded, query, expected):
        assert [u.name for u in loader.search(query)] == expected

    def test_empty_query_returns_all(self, loader, seeded):
        assert len(loader.search("  ")) == 3

    def test_like_wildcards_are_literal(self, loader, seeded):
        assert loader.search("%") == []
        assert loader.search("_") == []

    def test_search_results_are_cached_and_invalidated(self, writer, loader, cache, seeded):
        loader.search("tokyo")
        assert keys.search_key("tokyo") in cache.keys()
        writer.update_university(seeded[1].id, schemas.UniversityIn(name="京都"))
        assert keys.search_key("tokyo") not in cache.keys()


class TestFindById:

    def test_full_tree(self, writer, loader):
        created = writer.create_university(factories.university(scores=(2, 1, 1)))
        loaded = loader.find_by_id(created.id)
        assert loaded == created
        schedule = factories.first_schedule(loaded)
        assert [s.name for s in schedule.test_types[0].subjects] == ["数学", "英語", "国語"]

    def test_missing(self, loader):
        with pytest.raises(NotFoundError) as exc_info:
            loader.find_by_id(12345)
        assert exc_info.value.details == {"resource": "University", "id": 12345}

    def test_misses_are_not_cached(self, writer, loader, cache):
        with pytest.raises(NotFoundError):
            loader.find_by_id(1)
        assert cache.keys() == []


class TestOwnership:

    def test_major_under_other_university(self, loader, seeded):
        tokyo, kyoto, _ = seeded
        department = tokyo.departments[0]
        major = department.majors[0]
        assert loader.find_major(department.id, major.id, tokyo.id).name == "Robotics"
        with pytest.raises(NotFoundError):
            loader.find_major(department.id, major.id, kyoto.id)

    def test_department_under_other_university(self, loader, seeded):
        tokyo, kyoto, _ = seeded
        with pytest.raises(NotFoundError):
            loader.find_department(kyoto.id, tokyo.departments[0].id)

    def test_subject_owner_checked_on_cache_hit(self, writer, loader):
        created = writer.create_university(factories.university())
        department = created.departments[0]
        test_type = factories.first_test_type(created)
        subject_id = test_type.subjects[0].id
        loader.find_subject(test_type.id, subject_id, created.id, department.id)
        with pytest.raises(NotFoundError):
            loader.find_subject(test_type.id, subject_id, created.id, department.id + 1)

    def test_schedule_and_children(self, writer, loader):
        created = writer.create_university(factories.university())
        department = created.departments[0]
        major = department.majors[0]
        schedule = factories.first_schedule(created)
        found = loader.find_admission_schedule(major.id, schedule.id, created.id, department.id)
        assert found == schedule
        info = schedule.admission_infos[0]
        assert loader.find_admission_info(schedule.id, info.id) == info
        test_type = schedule.test_types[0]
        assert loader.find_test_type(schedule.id, test_type.id) == test_type
        with pytest.raises(NotFoundError):
            loader.find_test_type(schedule.id + 1, test_type.id)
