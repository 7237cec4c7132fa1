"""Tests for the AI collaborators, driven by canned model replies."""

import json

import pytest

from ai_agent import analyze_data, build_data_context, extract_json, generate_rule, recommend_rules, suggest_corrections
from conftest import FakeAgent, make_client, make_task, make_worker
from entities import CoRunRule, CorrectionType, DataSet, PhaseWindowRule, Severity, ValidationIssue
from errors import AIResponseError, RuleFormatError


@pytest.fixture
def data() -> DataSet:
    return DataSet(
        clients=[make_client("C1", PriorityLevel=5), make_client("C2", PriorityLevel=5)],
        workers=[make_worker("W1", Skills=["coding", "ml"]), make_worker("W2", Skills=["coding"])],
        tasks=[make_task("T1")],
        rules=[CoRunRule(id="r1", description="T1 with T2", task_ids=("T1", "T2"))],
    )


class TestExtractJson:
    @pytest.mark.parametrize(
        "reply",
        [
            '{"type": "coRun"}',
            '```json\n{"type": "coRun"}\n```',
            'Sure! Here is the rule: {"type": "coRun"} Hope it helps.',
        ],
    )
    def test_finds_the_object(self, reply: str) -> None:
        assert extract_json(reply) == {"type": "coRun"}

    def test_arrays(self) -> None:
        assert extract_json('Findings:\n["a", "b"]') == ["a", "b"]

    @pytest.mark.parametrize("reply", ["", "no json here", "{broken: "])
    def test_garbage_raises(self, reply: str) -> None:
        with pytest.raises(AIResponseError):
            extract_json(reply)


def test_build_data_context(data: DataSet) -> None:
    context = build_data_context(data)
    assert context["counts"] == {"client": 2, "worker": 2, "task": 1, "rule": 1}
    assert context["skillDistribution"] == {"coding": 2, "ml": 1}
    assert context["priorityDistribution"] == {"5": 2}
    assert context["activeRules"] == ["T1 with T2"]


class TestGenerateRule:
    def test_reply_becomes_a_rule(self, data: DataSet) -> None:
        agent = FakeAgent(['{"type": "phaseWindow", "taskId": "T1", "allowedPhases": [1, 2]}'])
        rule = generate_rule(agent, "T1 only in phases 1-2", data)
        assert isinstance(rule, PhaseWindowRule)
        assert rule.allowed_phases == (1, 2)
        assert rule.id.startswith("ai-")
        assert "T1 only in phases 1-2" in agent.calls[0]["user"]

    def test_first_element_of_a_list(self, data: DataSet) -> None:
        agent = FakeAgent(['[{"type": "coRun", "taskIds": ["T1", "T3"]}, {"type": "coRun"}]'])
        assert generate_rule(agent, "x", data).task_ids == ("T1", "T3")

    @pytest.mark.parametrize("reply", ['{"error": "Rule is ambiguous or not supported."}', "[]", '{"type": "teleport"}'])
    def test_unusable_reply_raises(self, data: DataSet, reply: str) -> None:
        with pytest.raises(RuleFormatError):
            generate_rule(FakeAgent([reply]), "x", data)


class TestRecommendRules:
    def test_bad_entries_are_dropped(self, data: DataSet) -> None:
        reply = json.dumps([
            {"type": "loadLimit", "workerGroup": "GroupA", "maxSlotsPerPhase": 2},
            {"type": "unknown"},
        ])
        rules = recommend_rules(FakeAgent([reply]), data)
        assert [r.type for r in rules] == ["loadLimit"]

    def test_single_object_is_wrapped(self, data: DataSet) -> None:
        rules = recommend_rules(FakeAgent(['{"type": "coRun", "taskIds": "T1,T2"}']), data)
        assert len(rules) == 1

    def test_non_array_raises(self, data: DataSet) -> None:
        with pytest.raises(AIResponseError):
            recommend_rules(FakeAgent(['"just a string"']), data)


class TestAnalyzeData:
    def test_findings_are_strings(self, data: DataSet) -> None:
        assert analyze_data(FakeAgent(['["Skill ml is rare", 42]']), data) == ["Skill ml is rare", "42"]

    def test_non_array_raises(self, data: DataSet) -> None:
        with pytest.raises(AIResponseError):
            analyze_data(FakeAgent(['{"finding": "x"}']), data)


class TestSuggestCorrections:
    ISSUES = [ValidationIssue(f"C{i}", "PriorityLevel", "bad", Severity.ERROR) for i in range(8)]

    def test_no_issues_means_no_call(self, data: DataSet) -> None:
        agent = FakeAgent([])
        assert suggest_corrections(agent, data, []) == []
        assert agent.calls == []

    def test_only_first_five_issues_are_sent(self, data: DataSet) -> None:
        agent = FakeAgent(["[]"])
        suggest_corrections(agent, data, self.ISSUES)
        prompt = agent.calls[0]["user"]
        assert '"C4"' in prompt
        assert '"C5"' not in prompt

    def test_replies_become_corrections(self, data: DataSet) -> None:
        reply = json.dumps([
            {"rowId": "C0", "entityType": "clients", "field": "PriorityLevel", "newValue": 3, "reason": "r", "correctionType": "REPLACE"},
            {"rowId": "W2", "entityType": "workers", "field": "Skills", "newValue": ["ml"], "reason": "r", "correctionType": "APPEND"},
            {"rowId": "C1"},
        ])
        corrections = suggest_corrections(FakeAgent([reply]), data, self.ISSUES, limit=2)
        assert [(c.row_id, c.correction_type) for c in corrections] == [
            ("C0", CorrectionType.REPLACE),
            ("W2", CorrectionType.APPEND),
        ]

    def test_non_array_raises(self, data: DataSet) -> None:
        with pytest.raises(AIResponseError):
            suggest_corrections(FakeAgent(["42"]), data, self.ISSUES)
