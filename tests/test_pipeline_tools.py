"""Unit tests for generated-text cleanup, pipeline parsing and date coercion."""

from datetime import datetime, timezone

import pytest

from utils.pipeline_tools import (
    PipelineFormatError,
    clean_generated_text,
    coerce_match_dates,
    has_count_stage,
    parse_pipeline,
)


class TestCleanGeneratedText:
    def test_json_fence(self) -> None:
        assert clean_generated_text('```json\n[{"$limit": 5}]\n```') == '[{"$limit": 5}]'

    def test_leading_sql_token_and_fence(self) -> None:
        assert clean_generated_text('sql ```[{"$limit": 5}]```') == '[{"$limit": 5}]'

    def test_leading_sql_token_case_insensitive(self) -> None:
        assert clean_generated_text('SQL\n[{"$limit": 5}]') == '[{"$limit": 5}]'

    def test_plain_text_untouched(self) -> None:
        assert clean_generated_text('  [{"$count": "n"}]  ') == '[{"$count": "n"}]'

    def test_empty(self) -> None:
        assert clean_generated_text("   ") == ""
        assert clean_generated_text("```\n```") == ""


class TestParsePipeline:
    def test_list_of_stages(self) -> None:
        assert parse_pipeline('[{"$limit": 5}]') == [{"$limit": 5}]

    @pytest.mark.parametrize("text", ["not json", '{"$match": {}}', "[1, 2]", ""])
    def test_invalid(self, text) -> None:
        with pytest.raises(PipelineFormatError):
            parse_pipeline(text)


class TestCoerceMatchDates:
    def test_string_bounds_become_datetimes(self) -> None:
        stages = [
            {"$match": {"giftDate": {"$gte": "2023-01-01", "$lt": "2024-01-01T00:00:00Z"}}},
            {"$group": {"_id": None, "total": {"$sum": {"$toDouble": "$giftAmount"}}}},
        ]
        coerce_match_dates(stages, ["giftDate"])
        bounds = stages[0]["$match"]["giftDate"]
        assert bounds["$gte"] == datetime(2023, 1, 1)
        assert bounds["$lt"] == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert stages[1] == {"$group": {"_id": None, "total": {"$sum": {"$toDouble": "$giftAmount"}}}}

    def test_unparseable_and_other_fields_untouched(self) -> None:
        stages = [{"$match": {"giftDate": {"$gte": "last year"}, "postDate": {"$gte": "2023-01-01"}}}]
        coerce_match_dates(stages, ["giftDate"])
        assert stages[0]["$match"]["giftDate"]["$gte"] == "last year"
        assert stages[0]["$match"]["postDate"]["$gte"] == "2023-01-01"


def test_has_count_stage() -> None:
    assert has_count_stage([{"$match": {"unit": "Arts"}}, {"$count": "total"}])
    assert not has_count_stage([{"$limit": 1}])
