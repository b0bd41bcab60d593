"""Unit tests for PipelineAgent generation and execution."""

from datetime import datetime

from bson import Decimal128, ObjectId

from agents import pipeline_agent
from agents.pipeline_agent import GENERATION_FAILED
from config import settings
from utils.pipeline_tools import INVALID_PIPELINE_FORMAT
from conftest import FakeCollection, FakeDatabase, FakeLLM


class TestGeneratePipeline:
    """Generation returns cleaned pipeline text and never an empty pipeline."""

    def test_cleans_fenced_output(self, make_agent) -> None:
        llm = FakeLLM('```json\n[{"$limit": 10}]\n```')
        result = make_agent(llm).generate_pipeline("total gifts by year")
        assert result.success
        assert result.pipeline == '[{"$limit": 10}]'
        assert result.collection == "gifts"

    def test_prompt_layout(self, make_agent) -> None:
        llm = FakeLLM('[{"$limit": 1}]')
        make_agent(llm).generate_pipeline("total gifts by year")
        prompt = llm.last_prompt
        assert prompt.startswith("Collection: gifts")
        assert "User question: total gifts by year" in prompt
        assert prompt.endswith("Pipeline:")

    def test_routes_to_collection(self, make_agent) -> None:
        result = make_agent(FakeLLM('[{"$limit": 1}]')).generate_pipeline("top donors by age")
        assert result.collection == "constituents"

    def test_no_llm(self, make_agent) -> None:
        result = make_agent().generate_pipeline("total gifts by year")
        assert not result.success
        assert result.error == "No language model is configured"

    def test_llm_error(self, make_agent) -> None:
        result = make_agent(FakeLLM(error=RuntimeError("boom"))).generate_pipeline("total gifts by year")
        assert not result.success
        assert result.error == GENERATION_FAILED

    def test_empty_output(self, make_agent) -> None:
        assert make_agent(FakeLLM("")).generate_pipeline("total gifts").error == GENERATION_FAILED

    def test_fences_only(self, make_agent) -> None:
        result = make_agent(FakeLLM("```\n```")).generate_pipeline("total gifts")
        assert not result.success
        assert result.pipeline is None


class TestExecute:
    """Execution validates, runs and reshapes aggregation output."""

    def test_converts_documents(self, make_agent) -> None:
        oid = ObjectId()
        db = FakeDatabase({"gifts": FakeCollection([{"_id": oid, "total": Decimal128("10.5")}])})
        result = make_agent(db=db).execute("total gifts", '[{"$group": {"_id": "$unit"}}]')
        assert result.success
        assert result.collection == "gifts"
        assert result.rows == [{"_id": str(oid), "total": 10.5}]
        assert [(c.key, c.name) for c in result.columns] == [("_id", "Id"), ("total", "Total")]

    def test_passes_time_limit(self, make_agent, fake_db) -> None:
        make_agent().execute("total gifts", '[{"$limit": 1}]')
        assert fake_db["gifts"].calls[0]["kwargs"] == {"maxTimeMS": settings.query_timeout_ms}

    def test_invalid_format(self, make_agent, fake_db) -> None:
        result = make_agent().execute("total gifts", "not a pipeline")
        assert not result.success
        assert result.error_type == "format"
        assert result.error == INVALID_PIPELINE_FORMAT
        assert fake_db["gifts"].calls == []

    def test_unsafe_pipeline(self, make_agent, fake_db) -> None:
        result = make_agent().execute("total gifts", '[{"$out": "stolen"}]')
        assert result.error_type == "safety"
        assert result.error.startswith("Query safety violation:")
        assert fake_db["gifts"].calls == []

    def test_execution_error_detail(self, make_agent) -> None:
        db = FakeDatabase({"gifts": FakeCollection(error=RuntimeError("operation exceeded time limit"))})
        result = make_agent(db=db).execute("total gifts", '[{"$limit": 1}]')
        assert result.error_type == "execution"
        assert "time limit" in result.error

    def test_execution_error_hidden_in_production(self, make_agent, monkeypatch) -> None:
        monkeypatch.setattr(settings, "environment", "production")
        db = FakeDatabase({"gifts": FakeCollection(error=RuntimeError("secret detail"))})
        result = make_agent(db=db).execute("total gifts", '[{"$limit": 1}]')
        assert result.error == "Query execution failed"

    def test_no_documents(self, make_agent) -> None:
        result = make_agent().execute("total gifts", '[{"$limit": 1}]')
        assert result.success
        assert result.rows == []
        assert result.columns == []

    def test_count_stage_single_row(self, make_agent) -> None:
        db = FakeDatabase({"gifts": FakeCollection([{"count": 42}])})
        result = make_agent(db=db).execute("how many gifts", '[{"$match": {"unit": "Arts"}}, {"$count": "count"}]')
        assert result.rows == [{"count": 42}]
        assert [(c.key, c.name) for c in result.columns] == [("count", "Count")]

    def test_match_dates_coerced(self, make_agent, fake_db) -> None:
        make_agent().execute("gifts in 2023", '[{"$match": {"giftDate": {"$gte": "2023-01-01"}}}]')
        sent = fake_db["gifts"].calls[0]["pipeline"]
        assert sent[0]["$match"]["giftDate"]["$gte"] == datetime(2023, 1, 1)

    def test_repeatable(self, make_agent) -> None:
        db = FakeDatabase({"gifts": FakeCollection([{"unit": "Arts", "total": 5}])})
        agent = make_agent(db=db)
        pipeline = '[{"$group": {"_id": "$unit", "total": {"$sum": 1}}}]'
        assert agent.execute("gifts by unit", pipeline) == agent.execute("gifts by unit", pipeline)

    def test_routes_execution(self, make_agent, fake_db) -> None:
        make_agent().execute("list addresses in Toronto", '[{"$limit": 1}]')
        assert len(fake_db["addresses"].calls) == 1


def test_close_without_client(make_agent) -> None:
    make_agent().close()


class FakeMongoClient:
    def __init__(self, uri: str) -> None:
        self.uri = uri
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        return FakeDatabase(name=name)

    def close(self) -> None:
        self.closed = True


class TestFromSettings:
    def test_llm_startup_failure_disables_generation(self, monkeypatch) -> None:
        def broken_llm():
            raise RuntimeError("provider client could not be constructed")

        monkeypatch.setattr(pipeline_agent, "MongoClient", FakeMongoClient)
        monkeypatch.setattr(pipeline_agent, "create_llm", broken_llm)

        agent = pipeline_agent.PipelineAgent.from_settings()
        assert agent.llm is None
        assert agent.llm_metadata == {"provider": "none", "model": "none"}
        assert agent.database_name == settings.database_name
        assert agent.generate_pipeline("total gifts").error == "No language model is configured"

        agent.close()
        assert agent.client.closed
