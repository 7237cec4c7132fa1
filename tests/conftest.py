import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

# Modules live at the repository root
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from entities import DataSet  # noqa: E402


def make_client(client_id: str = "C1", **overrides: Any) -> Dict[str, Any]:
    row = {
        "ClientID": client_id,
        "ClientName": f"Client {client_id}",
        "PriorityLevel": 3,
        "RequestedTaskIDs": [],
        "GroupTag": "GroupA",
        "AttributesJSON": {},
    }
    row.update(overrides)
    return row


def make_worker(worker_id: str = "W1", **overrides: Any) -> Dict[str, Any]:
    row = {
        "WorkerID": worker_id,
        "WorkerName": f"Worker {worker_id}",
        "Skills": ["coding"],
        "AvailableSlots": [1, 2, 3],
        "MaxLoadPerPhase": 2,
        "WorkerGroup": "GroupA",
        "QualificationLevel": 3,
    }
    row.update(overrides)
    return row


def make_task(task_id: str = "T1", **overrides: Any) -> Dict[str, Any]:
    row = {
        "TaskID": task_id,
        "TaskName": f"Task {task_id}",
        "Category": "ETL",
        "Duration": 1,
        "RequiredSkills": ["coding"],
        "PreferredPhases": [1, 2],
        "MaxConcurrent": 1,
    }
    row.update(overrides)
    return row


class FakeAgent:
    """Stands in for GPTAgent: replays canned replies and records prompts."""

    def __init__(self, replies: List[str]):
        self.replies = list(replies)
        self.calls: List[Dict[str, str]] = []

    def chat_completion(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append({"system": system_prompt, "user": user_prompt})
        return self.replies.pop(0)


@pytest.fixture
def clean_data() -> DataSet:
    """A dataset with no errors and no warnings."""
    return DataSet(
        clients=[make_client("C1", RequestedTaskIDs=["T1", "T2"]), make_client("C2", PriorityLevel=5)],
        workers=[make_worker("W1"), make_worker("W2", Skills=["coding", "welding"])],
        tasks=[make_task("T1"), make_task("T2", RequiredSkills=["welding"])],
    )
