"""Unit tests for evidence selection and follow-up answers."""

from agents.data_chat import DataChatAgent, build_evidence_pack
from conftest import FakeLLM

KEYS = ["Name", "Department", "Years_of_Experience", "Satisfaction_Score"]


def _user(content):
    return {"role": "user", "content": content}


class TestBuildEvidencePack:
    def test_relevant_rows_first(self, staff_rows) -> None:
        pack = build_evidence_pack("Support staff", staff_rows, KEYS, k=2)
        assert [row.id for row in pack.rows] == [2, 0]
        assert pack.rows[0].data["Name"] == "Cy"

    def test_ties_keep_original_order(self, staff_rows) -> None:
        pack = build_evidence_pack("unrelated words", staff_rows, KEYS)
        assert [row.id for row in pack.rows] == [0, 1, 2]

    def test_stats_cover_every_row(self, staff_rows) -> None:
        pack = build_evidence_pack("Support", staff_rows, KEYS, k=1)
        assert len(pack.rows) == 1
        assert {s.column: s.count for s in pack.stats} == {"Years_of_Experience": 3, "Satisfaction_Score": 3}

    def test_schema_labels(self, staff_rows) -> None:
        pack = build_evidence_pack("x", staff_rows, KEYS, k=0)
        assert pack.rows == []
        dumped = pack.model_dump(by_alias=True)
        assert dumped["schema"][2] == {"key": "Years_of_Experience", "label": "Years Of Experience"}


class TestDataChatAgent:
    def test_correlation_question(self, staff_rows) -> None:
        answer, _ = DataChatAgent(enable_ai=False).answer(
            [_user("Is there a correlation here?")], {"results": staff_rows, "columns": []}
        )
        assert "strong positive correlation" in answer

    def test_average_question(self, staff_rows) -> None:
        answer, _ = DataChatAgent(enable_ai=False).answer(
            [_user("What is the average?")], {"results": staff_rows}
        )
        assert answer == "Average Years Of Experience is 2.00 across 3 records."

    def test_generic_question(self, staff_rows) -> None:
        answer, _ = DataChatAgent(enable_ai=False).answer([_user("Tell me about Sales")], {"results": staff_rows})
        assert answer.startswith(
            "I analyzed 3 rows with columns Name, Department, Years Of Experience, Satisfaction Score."
        )

    def test_question_from_context(self, staff_rows) -> None:
        answer, _ = DataChatAgent(enable_ai=False).answer(
            [], {"question": "relationship please", "results": staff_rows}
        )
        assert "correlation" in answer

    def test_no_rows(self) -> None:
        answer, evidence = DataChatAgent(enable_ai=False).answer([_user("anything?")], {"results": []})
        assert answer == "There are no results to discuss yet. Run a query first."
        assert evidence.rows == []

    def test_ai_answer_uses_history(self, staff_rows) -> None:
        llm = FakeLLM("Cy is the only Support employee.")
        history = [_user("first"), {"role": "assistant", "content": "reply"}, _user("Who works in Support?")]
        answer, _ = DataChatAgent(llm=llm, enable_ai=True).answer(history, {"results": staff_rows})
        assert answer == "Cy is the only Support employee."
        assert "assistant: reply" in llm.last_prompt
        assert "QUESTION: Who works in Support?" in llm.last_prompt
        assert '"schema"' in llm.last_prompt

    def test_ai_failure_falls_back(self, staff_rows) -> None:
        agent = DataChatAgent(llm=FakeLLM(error=RuntimeError("down")), enable_ai=True)
        answer, _ = agent.answer([_user("What is the average?")], {"results": staff_rows})
        assert answer.startswith("Average Years Of Experience")
