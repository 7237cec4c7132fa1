import logging
import re
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from entities import (
    CoRunRule,
    DataSet,
    LoadLimitRule,
    PatternMatchRule,
    PhaseWindowRule,
    SlotRestrictionRule,
    Severity,
    ValidationIssue,
    BusinessRule,
)
from errors import RuleFormatError

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return []


# --------- Checkers, one per rule type ---------

def check_co_run(rule: CoRunRule, data: DataSet) -> List[ValidationIssue]:
    """Flag clients that requested only part of a co-run task group."""
    if not rule.task_ids:
        return []
    group = set(rule.task_ids)
    issues = []
    for client in data.clients:
        requested = set(_as_list(client.get("RequestedTaskIDs")))
        overlap = requested & group
        if overlap and len(overlap) < len(group):
            issues.append(ValidationIssue(
                row_id=client.get("ClientID"),
                field="RequestedTaskIDs",
                message=(
                    "Rule violation: This client requested some, but not all, "
                    f"of the required co-run tasks: {', '.join(map(str, rule.task_ids))}."
                ),
                severity=Severity.WARNING,
            ))
    return issues


def check_slot_restriction(rule: SlotRestrictionRule, data: DataSet) -> List[ValidationIssue]:
    """Warn every member of a group whose shared AvailableSlots fall short."""
    if rule.group_tag is None or rule.min_common_slots is None:
        return []

    if rule.target_group == SlotRestrictionRule.CLIENT_GROUP:
        members = [c for c in data.clients if c.get("GroupTag") == rule.group_tag]
        id_field = "ClientID"
    else:
        members = [w for w in data.workers if w.get("WorkerGroup") == rule.group_tag]
        id_field = "WorkerID"

    # A lone member shares all of its own slots
    if len(members) < 2:
        return []

    common = set(_as_list(members[0].get("AvailableSlots")))
    for member in members[1:]:
        common &= set(_as_list(member.get("AvailableSlots")))

    if len(common) >= rule.min_common_slots:
        return []

    message = (
        f'Rule violation: group "{rule.group_tag}" shares {len(common)} common slot(s), '
        f"but at least {rule.min_common_slots} are required."
    )
    return [
        ValidationIssue(row_id=m.get(id_field), field="AvailableSlots", message=message, severity=Severity.WARNING)
        for m in members
    ]


def check_load_limit(rule: LoadLimitRule, data: DataSet) -> List[ValidationIssue]:
    # Advisory only: there is no computed schedule to measure load against.
    if rule.worker_group is None:
        return []
    if not any(w.get("WorkerGroup") == rule.worker_group for w in data.workers):
        logger.info("Load limit rule %s targets worker group %r, which has no members", rule.id, rule.worker_group)
    return []


def _phase_order(phase: Any) -> Tuple[int, Any]:
    # Numbers first, anything else after them by its text
    if isinstance(phase, (int, float)) and not isinstance(phase, bool):
        return (0, phase)
    return (1, str(phase))


def check_phase_window(rule: PhaseWindowRule, data: DataSet) -> List[ValidationIssue]:
    """A task whose preferred phases all fall outside the window is a hard conflict."""
    if rule.task_id is None or rule.allowed_phases is None:
        return []
    task = next((t for t in data.tasks if t.get("TaskID") == rule.task_id), None)
    if task is None:
        return []
    preferred = set(_as_list(task.get("PreferredPhases")))
    if not preferred or preferred & set(rule.allowed_phases):
        return []
    return [ValidationIssue(
        row_id=task.get("TaskID"),
        field="PreferredPhases",
        message=(
            f"Rule conflict: preferred phases {sorted(preferred, key=_phase_order)} do not overlap the "
            f"allowed phases {list(rule.allowed_phases)} of rule {rule.id}."
        ),
        severity=Severity.ERROR,
    )]


def check_pattern_match(rule: PatternMatchRule, data: DataSet) -> List[ValidationIssue]:
    # Stored and exported, never evaluated
    return []


RULE_CHECKERS: Dict[type, Callable[[Any, DataSet], List[ValidationIssue]]] = {
    CoRunRule: check_co_run,
    SlotRestrictionRule: check_slot_restriction,
    LoadLimitRule: check_load_limit,
    PhaseWindowRule: check_phase_window,
    PatternMatchRule: check_pattern_match,
}


def validate_rules(data: DataSet) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for rule in data.rules:
        checker = RULE_CHECKERS.get(type(rule))
        if checker is None:
            logger.debug("Skipping unsupported rule object %r", rule)
            continue
        issues.extend(checker(coerce_rule_fields(rule), data))
    return issues


# --------- Normalisation boundary for rule payloads ---------

_TYPE_ALIASES = {
    "corun": CoRunRule,
    "slotrestriction": SlotRestrictionRule,
    "loadlimit": LoadLimitRule,
    "phasewindow": PhaseWindowRule,
    "patternmatch": PatternMatchRule,
}

_ID_PREFIXES = {
    CoRunRule: "corun",
    SlotRestrictionRule: "slot",
    LoadLimitRule: "load",
    PhaseWindowRule: "phase",
    PatternMatchRule: "pattern",
}


def _first(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in raw and raw[name] is not None and raw[name] != "":
            return raw[name]
    return None


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _to_str_tuple(value: Any) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        return None
    return tuple(str(v).strip() for v in value if str(v).strip())


def _to_phase_tuple(value: Any) -> Optional[Tuple[int, ...]]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = [value]
    if isinstance(value, str):
        text = value.strip().strip("[]")
        range_match = re.fullmatch(r"\s*(\d+)\s*-\s*(\d+)\s*", text)
        if range_match:
            start, end = int(range_match.group(1)), int(range_match.group(2))
            return tuple(range(start, end + 1))
        value = text.split(",")
    if not isinstance(value, (list, tuple, set)):
        return None
    phases = []
    for item in value:
        phase = _to_int(item)
        if phase is not None:
            phases.append(phase)
    return tuple(phases)


def _to_target_group(value: Any) -> str:
    text = str(value or "").replace("_", "").replace(" ", "").lower()
    if text.startswith("client"):
        return SlotRestrictionRule.CLIENT_GROUP
    return SlotRestrictionRule.WORKER_GROUP


def _resolve_rule_class(raw_type: Any):
    key = re.sub(r"[^a-z]", "", str(raw_type or "").lower())
    if key.endswith("rule"):
        key = key[: -len("rule")]
    return _TYPE_ALIASES.get(key)


def _describe(rule_cls, values: Dict[str, Any]) -> str:
    if rule_cls is CoRunRule and values.get("task_ids"):
        return f"Tasks {', '.join(values['task_ids'])} must run together."
    if rule_cls is SlotRestrictionRule and values.get("group_tag"):
        return f"Members of {values['group_tag']} must share at least {values.get('min_common_slots')} common slots."
    if rule_cls is LoadLimitRule and values.get("worker_group"):
        return f"Workers in {values['worker_group']} cannot exceed {values.get('max_slots_per_phase')} slots per phase."
    if rule_cls is PhaseWindowRule and values.get("task_id"):
        phases = ", ".join(map(str, values.get("allowed_phases") or ()))
        return f"Task {values['task_id']} must run in phases: {phases}."
    if rule_cls is PatternMatchRule and values.get("pattern"):
        return f"Rows matching /{values['pattern']}/ follow template {values.get('rule_template')}."
    return f"{rule_cls.type} rule"


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def coerce_rule_fields(rule: BusinessRule) -> BusinessRule:
    """
    Apply the payload coercions to a rule object built in code, so a field of
    the wrong type makes the rule inert instead of breaking a validation pass.
    """
    if isinstance(rule, CoRunRule):
        return replace(rule, task_ids=_to_str_tuple(rule.task_ids))
    if isinstance(rule, SlotRestrictionRule):
        return replace(
            rule,
            target_group=_to_target_group(rule.target_group),
            group_tag=_optional_str(rule.group_tag),
            min_common_slots=_to_int(rule.min_common_slots),
        )
    if isinstance(rule, LoadLimitRule):
        return replace(
            rule,
            worker_group=_optional_str(rule.worker_group),
            max_slots_per_phase=_to_int(rule.max_slots_per_phase),
        )
    if isinstance(rule, PhaseWindowRule):
        return replace(rule, task_id=_optional_str(rule.task_id), allowed_phases=_to_phase_tuple(rule.allowed_phases))
    return rule


def new_rule_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def normalize_rule(raw: Any, id_prefix: Optional[str] = None) -> BusinessRule:
    """
    Map a loosely shaped rule payload (rule builder form or model output) onto
    the canonical rule dataclasses.

    Known alternate spellings are accepted here and nowhere else. Fields that
    cannot be found are left as None so the matching checker skips the rule.
    Raises RuleFormatError when the payload is not an object, reports an
    error, or names no known rule type.
    """
    if isinstance(raw, tuple(RULE_CHECKERS)):
        return coerce_rule_fields(raw)
    if not isinstance(raw, Mapping):
        raise RuleFormatError(f"Rule must be a JSON object, got {type(raw).__name__}")
    if raw.get("error"):
        raise RuleFormatError(str(raw["error"]))

    merged: Dict[str, Any] = {}
    params = raw.get("parameters")
    if isinstance(params, Mapping):
        merged.update(params)
    merged.update({k: v for k, v in raw.items() if k != "parameters"})
    if isinstance(params, Mapping):
        # patternMatch keeps its own parameters mapping
        merged["parameters"] = dict(params)

    rule_cls = _resolve_rule_class(_first(merged, "type", "ruleType", "rule_type"))
    if rule_cls is None:
        raise RuleFormatError(f"Unknown rule type: {merged.get('type')!r}")

    values: Dict[str, Any] = {}
    if rule_cls is CoRunRule:
        values["task_ids"] = _to_str_tuple(_first(merged, "taskIds", "task_ids", "taskIDs", "TaskIDs", "tasks", "taskGroup"))
    elif rule_cls is SlotRestrictionRule:
        target = _first(merged, "targetGroup", "target_group", "target")
        if target is None and _first(merged, "workerGroup") is None and _first(merged, "clientGroup", "GroupTag") is not None:
            target = SlotRestrictionRule.CLIENT_GROUP
        values["target_group"] = _to_target_group(target)
        group_tag = _first(merged, "groupTag", "group_tag", "group", "GroupTag", "workerGroup", "clientGroup")
        values["group_tag"] = None if group_tag is None else str(group_tag)
        values["min_common_slots"] = _to_int(_first(merged, "minCommonSlots", "min_common_slots", "minSlots", "commonSlots"))
    elif rule_cls is LoadLimitRule:
        group = _first(merged, "workerGroup", "worker_group", "group", "WorkerGroup", "groupTag")
        values["worker_group"] = None if group is None else str(group)
        values["max_slots_per_phase"] = _to_int(
            _first(merged, "maxSlotsPerPhase", "max_slots_per_phase", "maxLoad", "maxSlots", "maxLoadPerPhase")
        )
    elif rule_cls is PhaseWindowRule:
        task_id = _first(merged, "taskId", "task_id", "TaskID", "task")
        values["task_id"] = None if task_id is None else str(task_id)
        phases = _first(merged, "allowedPhases", "allowed_phases", "phases", "phaseRange")
        if phases is None and _first(merged, "phaseStart") is not None and _first(merged, "phaseEnd") is not None:
            start, end = _to_int(merged["phaseStart"]), _to_int(merged["phaseEnd"])
            if start is not None and end is not None:
                phases = list(range(start, end + 1))
        values["allowed_phases"] = _to_phase_tuple(phases)
    elif rule_cls is PatternMatchRule:
        pattern = _first(merged, "pattern", "regex")
        template = _first(merged, "ruleTemplate", "rule_template", "template")
        values["pattern"] = None if pattern is None else str(pattern)
        values["rule_template"] = None if template is None else str(template)
        extra = merged.get("parameters")
        values["parameters"] = dict(extra) if isinstance(extra, Mapping) else {}

    rule_id = _first(merged, "id", "ruleId")
    if rule_id is None:
        rule_id = new_rule_id(id_prefix or _ID_PREFIXES[rule_cls])
    description = _first(merged, "description", "name") or _describe(rule_cls, values)

    return rule_cls(id=str(rule_id), description=str(description), **values)


def normalize_rules(raw_rules: Iterable[Any], id_prefix: Optional[str] = None) -> List[BusinessRule]:
    """Normalise a batch, dropping entries that cannot be mapped."""
    rules = []
    for raw in raw_rules:
        try:
            rules.append(normalize_rule(raw, id_prefix=id_prefix))
        except RuleFormatError as e:
            logger.warning("Dropping rule payload %r: %s", raw, e)
    return rules


def rule_by_id(rules: Iterable[BusinessRule], rule_id: str) -> Optional[BusinessRule]:
    return next((r for r in rules if r.id == rule_id), None)
