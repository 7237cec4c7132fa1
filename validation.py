"""
Validation engine.

``validate_all`` is the single entry point: a pure function of a DataSet that
returns every problem found, in a fixed order (entity checks, cross-entity
checks, then rules in list order). It never mutates its input and keeps no
state between calls, so it is simply re-run after every change.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from entities import (
    CLIENTS,
    ENTITY_TYPES,
    ID_FIELDS,
    TASKS,
    WORKERS,
    DataSet,
    Row,
    Severity,
    ValidationIssue,
    is_invalid_attributes,
)
from rules import validate_rules

logger = logging.getLogger(__name__)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


# --------- Entity validators ---------

def validate_clients(clients: List[Row], tasks: List[Row]) -> List[ValidationIssue]:
    issues = []
    task_ids = {t.get("TaskID") for t in tasks}

    for client in clients:
        client_id = client.get("ClientID")

        priority = _number(client.get("PriorityLevel"))
        if priority is None or priority < 1 or priority > 5:
            issues.append(ValidationIssue(
                client_id, "PriorityLevel",
                f"PriorityLevel must be between 1 and 5, but is {client.get('PriorityLevel')}.",
                Severity.ERROR,
            ))

        if is_invalid_attributes(client.get("AttributesJSON")):
            issues.append(ValidationIssue(client_id, "AttributesJSON", "The JSON format is invalid.", Severity.ERROR))

        requested = client.get("RequestedTaskIDs")
        if isinstance(requested, (list, tuple)):
            for task_id in requested:
                if task_id and task_id not in task_ids:
                    issues.append(ValidationIssue(
                        client_id, "RequestedTaskIDs",
                        f'Requested TaskID "{task_id}" does not exist in the tasks list.',
                        Severity.WARNING,
                    ))
    return issues


def validate_workers(workers: List[Row]) -> List[ValidationIssue]:
    issues = []
    for worker in workers:
        worker_id = worker.get("WorkerID")
        name = worker.get("WorkerName")
        if name is None or not str(name).strip():
            issues.append(ValidationIssue(worker_id, "WorkerName", "WorkerName cannot be empty.", Severity.ERROR))
        if not worker.get("Skills"):
            issues.append(ValidationIssue(worker_id, "Skills", "Worker must have at least one skill.", Severity.WARNING))
    return issues


def validate_tasks(tasks: List[Row]) -> List[ValidationIssue]:
    issues = []
    for task in tasks:
        duration = _number(task.get("Duration"))
        if duration is None or duration < 1:
            issues.append(ValidationIssue(
                task.get("TaskID"), "Duration",
                f"Duration must be at least 1, but is {task.get('Duration')}.",
                Severity.ERROR,
            ))
    return issues


# --------- Cross-entity validators ---------

def validate_skill_coverage(tasks: List[Row], workers: List[Row]) -> List[ValidationIssue]:
    """Every skill a task requires must be held by at least one worker."""
    if not tasks or not workers:
        return []

    offered = set()
    for worker in workers:
        skills = worker.get("Skills")
        if isinstance(skills, (list, tuple, set)):
            offered.update(skills)

    issues = []
    for task in tasks:
        required = task.get("RequiredSkills")
        if not isinstance(required, (list, tuple, set)):
            continue
        for skill in required:
            if skill not in offered:
                issues.append(ValidationIssue(
                    task.get("TaskID"), "RequiredSkills",
                    f'No worker has the required skill: "{skill}".',
                    Severity.ERROR,
                ))
    return issues


def validate_duplicate_ids(data: DataSet) -> List[ValidationIssue]:
    """Flag every occurrence of an id after its first, per table."""
    issues = []
    for entity_type in ENTITY_TYPES:
        id_field = ID_FIELDS[entity_type]
        seen = set()
        for row in data.table(entity_type):
            value = row.get(id_field)
            if value in seen:
                issues.append(ValidationIssue(value, id_field, f'Duplicate {id_field} "{value}" found.', Severity.ERROR))
            seen.add(value)
    return issues


# --------- Orchestrator ---------

def validate_all(data: DataSet) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []

    issues.extend(validate_clients(data.clients, data.tasks))
    issues.extend(validate_workers(data.workers))
    issues.extend(validate_tasks(data.tasks))

    issues.extend(validate_skill_coverage(data.tasks, data.workers))
    issues.extend(validate_duplicate_ids(data))

    issues.extend(validate_rules(data))

    logger.debug("Validation pass produced %d issue(s)", len(issues))
    return issues


# --------- Helpers for consumers of the issue list ---------

def summarize(issues: Iterable[ValidationIssue]) -> Dict[str, int]:
    errors = warnings = 0
    for issue in issues:
        if issue.severity == Severity.ERROR:
            errors += 1
        else:
            warnings += 1
    return {"errors": errors, "warnings": warnings, "total": errors + warnings}


def is_export_ready(issues: Iterable[ValidationIssue]) -> bool:
    return not any(issue.is_error for issue in issues)


def issues_by_row(issues: Iterable[ValidationIssue]) -> Dict[Any, List[ValidationIssue]]:
    grouped: Dict[Any, List[ValidationIssue]] = defaultdict(list)
    for issue in issues:
        grouped[issue.row_id].append(issue)
    return dict(grouped)


def attach_issues(rows: List[Row], issues: Iterable[ValidationIssue], entity_type: str) -> List[Row]:
    """
    Return copies of ``rows`` with an ``errors`` list for display.

    Rows are joined to issues by their id value, so ids shared between tables
    (a client and a task both called "X1") pick up each other's issues only if
    the caller passes a mixed issue list; pass ``issues_for_table`` output to
    keep them apart.
    """
    id_field = ID_FIELDS[entity_type]
    grouped = issues_by_row(issues)
    attached = []
    for row in rows:
        row_issues = grouped.get(row.get(id_field), [])
        attached.append({
            **row,
            "errors": [{k: v for k, v in i.to_dict().items() if k != "rowId"} for i in row_issues],
        })
    return attached


_TABLE_FIELDS = {
    CLIENTS: {"ClientID", "ClientName", "PriorityLevel", "RequestedTaskIDs", "GroupTag", "AttributesJSON", "AvailableSlots"},
    WORKERS: {"WorkerID", "WorkerName", "Skills", "AvailableSlots", "MaxLoadPerPhase", "WorkerGroup", "QualificationLevel"},
    TASKS: {"TaskID", "TaskName", "Category", "Duration", "RequiredSkills", "PreferredPhases", "MaxConcurrent"},
}


def issues_for_table(data: DataSet, issues: Iterable[ValidationIssue], entity_type: str) -> List[ValidationIssue]:
    """Keep the issues that belong to rows of one table."""
    id_field = ID_FIELDS[entity_type]
    ids = {row.get(id_field) for row in data.table(entity_type)}
    fields = _TABLE_FIELDS[entity_type]
    return [i for i in issues if i.row_id in ids and i.field in fields]
