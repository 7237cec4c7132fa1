"""
Record shapes shared by the validation engine and its collaborators.

Entity rows stay plain dicts keyed by spreadsheet header names so that extra
columns survive a load/edit/export round trip. Everything the engine emits or
accepts besides rows is modelled here.
"""
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

Row = Dict[str, Any]

CLIENTS = "clients"
WORKERS = "workers"
TASKS = "tasks"
ENTITY_TYPES = (CLIENTS, WORKERS, TASKS)

ID_FIELDS = {
    CLIENTS: "ClientID",
    WORKERS: "WorkerID",
    TASKS: "TaskID",
}

CLIENT_COLUMNS = ["ClientID", "ClientName", "PriorityLevel", "RequestedTaskIDs", "GroupTag", "AttributesJSON"]
WORKER_COLUMNS = [
    "WorkerID", "WorkerName", "Skills", "AvailableSlots",
    "MaxLoadPerPhase", "WorkerGroup", "QualificationLevel",
]
TASK_COLUMNS = ["TaskID", "TaskName", "Category", "Duration", "RequiredSkills", "PreferredPhases", "MaxConcurrent"]


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class CorrectionType(str, Enum):
    REPLACE = "REPLACE"
    APPEND = "APPEND"


# --------- AttributesJSON parse-failure sentinel ---------
@dataclass(frozen=True)
class InvalidAttributes:
    """Stands in for an AttributesJSON cell whose text was not valid JSON."""

    original_value: Any
    error: str = "Invalid JSON format"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "originalValue": self.original_value}


def is_invalid_attributes(value: Any) -> bool:
    if isinstance(value, InvalidAttributes):
        return True
    # Same sentinel after a trip through JSON
    return isinstance(value, Mapping) and bool(value.get("error")) and "originalValue" in value


def row_id(row: Row, entity_type: str) -> Any:
    return row.get(ID_FIELDS[entity_type])


# --------- Validation output ---------
@dataclass(frozen=True)
class ValidationIssue:
    row_id: Any
    field: str
    message: str
    severity: Severity

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowId": self.row_id,
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
        }


# --------- Corrections ---------
@dataclass(frozen=True)
class Correction:
    row_id: Any
    field: str
    new_value: Any
    entity_type: Optional[str] = None
    reason: str = ""
    correction_type: CorrectionType = CorrectionType.REPLACE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Correction":
        """Build a correction from the camelCase shape the assistant returns."""
        if not isinstance(data, Mapping):
            raise ValueError(f"Correction must be an object, got {type(data).__name__}")
        row = data.get("rowId", data.get("row_id"))
        field_name = data.get("field")
        if row is None or row == "" or not field_name:
            raise ValueError("Correction needs both rowId and field")
        if "newValue" in data:
            new_value = data["newValue"]
        elif "new_value" in data:
            new_value = data["new_value"]
        else:
            raise ValueError("Correction needs a newValue")

        entity_type = data.get("entityType", data.get("entity_type"))
        if entity_type is not None:
            entity_type = str(entity_type).strip().lower()
            if entity_type in ("client", "worker", "task"):
                entity_type += "s"
            if entity_type not in ENTITY_TYPES:
                raise ValueError(f"Unknown entityType: {entity_type}")

        raw_type = str(data.get("correctionType", data.get("correction_type", "REPLACE"))).upper()
        try:
            correction_type = CorrectionType(raw_type)
        except ValueError:
            raise ValueError(f"Unknown correctionType: {raw_type}") from None

        return cls(
            row_id=row,
            field=str(field_name),
            new_value=new_value,
            entity_type=entity_type,
            reason=str(data.get("reason", "")),
            correction_type=correction_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowId": self.row_id,
            "entityType": self.entity_type,
            "field": self.field,
            "newValue": self.new_value,
            "reason": self.reason,
            "correctionType": self.correction_type.value,
        }


# --------- Business rules ---------
def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass(frozen=True)
class _BaseRule:
    id: str
    description: str = ""

    type: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "type": self.type, "description": self.description}
        for f in fields(self):
            if f.name in ("id", "description"):
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            out[_camel(f.name)] = list(value) if isinstance(value, tuple) else value
        return out


@dataclass(frozen=True)
class CoRunRule(_BaseRule):
    task_ids: Optional[Tuple[str, ...]] = None

    type: ClassVar[str] = "coRun"


@dataclass(frozen=True)
class SlotRestrictionRule(_BaseRule):
    target_group: Optional[str] = None
    group_tag: Optional[str] = None
    min_common_slots: Optional[int] = None

    type: ClassVar[str] = "slotRestriction"

    CLIENT_GROUP: ClassVar[str] = "ClientGroup"
    WORKER_GROUP: ClassVar[str] = "WorkerGroup"


@dataclass(frozen=True)
class LoadLimitRule(_BaseRule):
    worker_group: Optional[str] = None
    max_slots_per_phase: Optional[int] = None

    type: ClassVar[str] = "loadLimit"


@dataclass(frozen=True)
class PhaseWindowRule(_BaseRule):
    task_id: Optional[str] = None
    allowed_phases: Optional[Tuple[int, ...]] = None

    type: ClassVar[str] = "phaseWindow"


@dataclass(frozen=True)
class PatternMatchRule(_BaseRule):
    pattern: Optional[str] = None
    rule_template: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None

    type: ClassVar[str] = "patternMatch"


BusinessRule = Union[CoRunRule, SlotRestrictionRule, LoadLimitRule, PhaseWindowRule, PatternMatchRule]

RULE_CLASSES = {cls.type: cls for cls in (CoRunRule, SlotRestrictionRule, LoadLimitRule, PhaseWindowRule, PatternMatchRule)}


# --------- Whole application state handed to the engine ---------
@dataclass(frozen=True)
class DataSet:
    clients: List[Row] = field(default_factory=list)
    workers: List[Row] = field(default_factory=list)
    tasks: List[Row] = field(default_factory=list)
    rules: List[BusinessRule] = field(default_factory=list)

    def table(self, entity_type: str) -> List[Row]:
        if entity_type not in ENTITY_TYPES:
            raise KeyError(f"Unknown entity type: {entity_type}")
        return getattr(self, entity_type)

    def with_table(self, entity_type: str, rows: List[Row]) -> "DataSet":
        if entity_type not in ENTITY_TYPES:
            raise KeyError(f"Unknown entity type: {entity_type}")
        return replace(self, **{entity_type: list(rows)})

    def with_rules(self, rules: List[BusinessRule]) -> "DataSet":
        return replace(self, rules=list(rules))

    @property
    def is_empty(self) -> bool:
        return not (self.clients or self.workers or self.tasks)
