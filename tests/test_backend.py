import json
from pathlib import Path

import pytest

from backend import DataManager
from conftest import FakeAgent, make_client, make_task, make_worker
from entities import CoRunRule, Correction, InvalidAttributes
from errors import AIUnavailableError, FileParseError, RuleFormatError

WORKERS_CSV = """WorkerID,WorkerName,Skills,AvailableSlots,MaxLoadPerPhase,WorkerGroup,QualificationLevel
W1,Ann,"coding,ml","[1,2,3]",2,GroupA,4
W2,,coding,1-2,1,GroupA,3
"""


@pytest.fixture
def dm() -> DataManager:
    manager = DataManager(enable_ai=False)
    manager.load_table("clients", [make_client("C1", PriorityLevel=9, RequestedTaskIDs=["T1"])])
    manager.load_table("workers", [make_worker("W1")])
    manager.load_table("tasks", [make_task("T1"), make_task("T2")])
    return manager


class TestLoading:
    def test_load_file_detects_the_table(self, tmp_path: Path) -> None:
        path = tmp_path / "people.csv"
        path.write_text(WORKERS_CSV)
        manager = DataManager(enable_ai=False)
        assert manager.load_file(str(path)) == "workers"
        assert manager.workers[1]["AvailableSlots"] == [1, 2]
        assert [(i.row_id, i.field) for i in manager.validate_all()] == [("W2", "WorkerName")]

    def test_undetectable_file_raises(self) -> None:
        with pytest.raises(FileParseError):
            DataManager(enable_ai=False).load_file(b"A,B\n1,2\n", filename="mystery.csv")

    def test_load_files(self, tmp_path: Path) -> None:
        path = tmp_path / "w.csv"
        path.write_text(WORKERS_CSV)
        manager = DataManager(enable_ai=False)
        manager.load_files(workers_path=str(path))
        assert len(manager.workers) == 2
        assert manager.clients == []

    def test_load_many_is_all_or_nothing(self, dm: DataManager, tmp_path: Path) -> None:
        good = tmp_path / "w.csv"
        good.write_text(WORKERS_CSV)
        bad = tmp_path / "t.xlsx"
        bad.write_bytes(b"garbage")
        with pytest.raises(FileParseError):
            dm.load_many([(str(good), None, None), (str(bad), None, "tasks")])
        assert [w["WorkerID"] for w in dm.workers] == ["W1"]
        assert [t["TaskID"] for t in dm.tasks] == ["T1", "T2"]

    def test_load_table_coerces_json_rows(self) -> None:
        manager = DataManager(enable_ai=False)
        manager.load_table("clients", [{"ClientID": "C1", "PriorityLevel": "2", "AttributesJSON": "{bad"}])
        assert manager.clients[0]["PriorityLevel"] == 2
        assert manager.clients[0]["AttributesJSON"] == InvalidAttributes("{bad")

    def test_clear_table(self, dm: DataManager) -> None:
        dm.clear_table("tasks")
        assert dm.tasks == []


class TestEditing:
    def test_update_cell_revalidates(self, dm: DataManager) -> None:
        assert dm.validation_summary()["errors"] == 1
        row = dm.update_cell("clients", 0, "PriorityLevel", "4")
        assert row["PriorityLevel"] == 4
        assert dm.validation_summary()["errors"] == 0

    def test_update_cell_out_of_range(self, dm: DataManager) -> None:
        with pytest.raises(IndexError):
            dm.update_cell("clients", 3, "PriorityLevel", 1)

    def test_rows_with_issues(self, dm: DataManager) -> None:
        rows = dm.rows_with_issues("clients")
        assert [e["field"] for e in rows[0]["errors"]] == ["PriorityLevel"]
        assert "errors" not in dm.clients[0]


class TestRules:
    def test_add_and_remove(self, dm: DataManager) -> None:
        rule = dm.add_rule({"type": "coRun", "taskIds": ["T1", "T2"]})
        assert dm.rules == [rule]
        assert [i.field for i in dm.validate_all()] == ["PriorityLevel", "RequestedTaskIDs"]
        assert dm.remove_rule(rule.id)
        assert not dm.remove_rule(rule.id)
        assert dm.rules == []

    def test_add_rule_rejects_unknown_type(self, dm: DataManager) -> None:
        with pytest.raises(RuleFormatError):
            dm.add_rule({"type": "teleport"})


class TestCorrections:
    def test_apply_from_dict(self, dm: DataManager) -> None:
        applied = dm.apply_correction({"rowId": "C1", "field": "PriorityLevel", "newValue": 2})
        assert isinstance(applied, Correction)
        assert dm.clients[0]["PriorityLevel"] == 2

    def test_text_correction_clears_the_issue(self, dm: DataManager) -> None:
        dm.apply_correction({"rowId": "C1", "field": "PriorityLevel", "newValue": "3"})
        assert dm.clients[0]["PriorityLevel"] == 3
        assert dm.validate_all() == []

    def test_malformed_correction(self, dm: DataManager) -> None:
        with pytest.raises(ValueError):
            dm.apply_correction({"rowId": "C1"})


class TestPrioritiesAndExport:
    def test_set_priorities(self, dm: DataManager) -> None:
        assert dm.set_priorities({"Fairness": "40"})["Fairness"] == 40.0
        assert dm.priorities["PriorityLevel"] == 75

    @pytest.mark.parametrize("value", [-1, 101, "lots"])
    def test_invalid_weight(self, dm: DataManager, value) -> None:
        with pytest.raises(ValueError):
            dm.set_priorities({"Fairness": value})
        assert dm.priorities["Fairness"] == 25

    def test_export_all(self, dm: DataManager, tmp_path: Path) -> None:
        dm.add_rule(CoRunRule(id="r1", task_ids=("T1", "T2")))
        paths = dm.export_all(str(tmp_path))
        assert len(paths) == 4
        config = json.loads((tmp_path / "rules.json").read_text())
        assert config["rules"][0]["id"] == "r1"
        assert config["prioritization"]["Fairness"] == 25


class TestAI:
    def test_disabled_ai_raises(self, dm: DataManager) -> None:
        with pytest.raises(AIUnavailableError):
            dm.analyze()
        with pytest.raises(AIUnavailableError):
            dm.generate_rule_from_natural_language("T1 with T2")

    def test_add_rule_from_nl(self, dm: DataManager) -> None:
        dm.gpt_agent = FakeAgent(['{"type": "coRun", "taskIds": ["T1", "T2"], "description": "pair"}'])
        rule = dm.add_rule_from_nl("T1 and T2 together")
        assert dm.rules == [rule]
        assert rule.description == "pair"

    def test_generate_does_not_add(self, dm: DataManager) -> None:
        dm.gpt_agent = FakeAgent(['{"type": "loadLimit", "workerGroup": "GroupA", "maxSlotsPerPhase": 1}'])
        dm.generate_rule_from_natural_language("limit GroupA")
        assert dm.rules == []

    def test_suggest_corrections_sends_current_issues(self, dm: DataManager) -> None:
        agent = FakeAgent(['[{"rowId": "C1", "field": "PriorityLevel", "newValue": 5, "correctionType": "REPLACE"}]'])
        dm.gpt_agent = agent
        corrections = dm.suggest_corrections()
        assert '"PriorityLevel"' in agent.calls[0]["user"]
        dm.apply_correction(corrections[0])
        assert dm.validate_all() == []

    def test_recommend_and_analyze(self) -> None:
        agent = FakeAgent(['[{"type": "coRun", "taskIds": ["T1", "T2"]}]', '["One finding"]'])
        manager = DataManager(agent=agent)
        assert len(manager.get_recommended_rules()) == 1
        assert manager.analyze() == ["One finding"]
        assert manager.rules == []
