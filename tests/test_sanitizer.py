"""
Sanitizer Tests
"""
import pytest

from app.schemas import university as schemas
from app.services.sanitizer import Sanitizer, SanitizerConfig, sanitizer


class TestSanitizeSteps:

    def test_script_content_is_removed(self):
        assert sanitizer.sanitize("<script>alert(1)</script>東京大学") == "東京大学"

    def test_tags_are_stripped_keeping_text(self):
        assert sanitizer.sanitize("<b>京都</b><i>大学</i>") == "京都大学"

    def test_attributes_never_survive_on_allowed_tags(self):
        custom = Sanitizer(SanitizerConfig(allowed_tags=frozenset({"b"})))
        assert custom.sanitize('<b onclick="x()">大阪</b>大学') == "<b>大阪</b>大学"

    def test_control_and_format_characters_are_removed(self):
        assert sanitizer.sanitize("東\x00京\u200b大学\x07") == "東京大学"

    def test_allowed_controls_are_kept(self):
        custom = Sanitizer(SanitizerConfig(allowed_controls=frozenset({"\x07"})))
        assert custom.sanitize("a\x07b") == "a\x07b"

    def test_fullwidth_space_becomes_ascii_space(self):
        assert sanitizer.sanitize("東京　大学") == "東京 大学"

    def test_whitespace_runs_collapse_and_trim(self):
        assert sanitizer.sanitize("  東京 \t\n  大学  ") == "東京 大学"

    def test_empty_string(self):
        assert sanitizer.sanitize("") == ""


class TestIdempotence:

    @pytest.mark.parametrize("text", [
        "<script>alert(1)</script>東京大学",
        "&lt;b&gt;名古屋&lt;/b&gt;大学",
        "&amp;lt;script&amp;gt;x&amp;lt;/script&amp;gt;",
        "東京　　大学\u200b",
        "plain",
    ])
    def test_sanitize_twice_equals_once(self, text):
        once = sanitizer.sanitize(text)
        assert sanitizer.sanitize(once) == once

    def test_entity_encoded_markup_is_stripped(self):
        assert sanitizer.sanitize("&lt;b&gt;名古屋&lt;/b&gt;大学") == "名古屋大学"


class TestSanitizeData:

    def test_only_configured_fields_are_touched(self):
        data = {"name": " <b>北海道</b>大学 ", "status": " <b>draft</b> ", "departments": [{"name": "工学部\x00"}]}
        result = sanitizer.sanitize_data(data)
        assert result == {"name": "北海道大学", "status": " <b>draft</b> ", "departments": [{"name": "工学部"}]}

    def test_input_is_not_mutated(self):
        data = {"name": "<i>x</i>"}
        sanitizer.sanitize_data(data)
        assert data == {"name": "<i>x</i>"}

    def test_sanitize_model_returns_new_model(self):
        model = schemas.UniversityIn(name="<script>x</script>東北大学", departments=[schemas.DepartmentIn(name="　理学部　")])
        result = sanitizer.sanitize_model(model)
        assert result is not model
        assert result.name == "東北大学"
        assert result.departments[0].name == "理学部"
        assert model.name == "<script>x</script>東北大学"
