import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import ai_agent
import config
from corrections import apply_correction
from entities import ENTITY_TYPES, BusinessRule, Correction, DataSet, Row
from errors import AIUnavailableError, FileParseError
from exporter import export_all, export_payloads
from parsers import coerce_rows, identify_entity_type, parse_file
from rules import normalize_rule, rule_by_id
from validation import attach_issues, issues_for_table, summarize, validate_all

logger = logging.getLogger(__name__)


# --------- Main DataManager Class ---------
class DataManager:
    """
    Session state for one planning workspace.

    Every change swaps in a new DataSet; validation is recomputed from scratch
    on demand rather than patched.
    """

    def __init__(self, agent: Optional[Any] = None, enable_ai: bool = True):
        self.gpt_agent = agent
        if self.gpt_agent is None and enable_ai:
            try:
                self.gpt_agent = ai_agent.GPTAgent()
            except Exception as e:
                logger.warning("AI features disabled due to initialization error: %s", e)

        self.data = DataSet()
        self.priorities: Dict[str, float] = dict(config.DEFAULT_PRIORITIES)

    # --- Tables ---
    @property
    def clients(self) -> List[Row]:
        return self.data.clients

    @property
    def workers(self) -> List[Row]:
        return self.data.workers

    @property
    def tasks(self) -> List[Row]:
        return self.data.tasks

    @property
    def rules(self) -> List[BusinessRule]:
        return self.data.rules

    def load_table(self, entity_type: str, rows: List[Mapping[str, Any]]) -> None:
        """Replace a whole table, coercing JSON-shaped rows to engine types."""
        self.data = self.data.with_table(entity_type, coerce_rows([dict(r) for r in rows]))
        logger.info("Loaded %d %s", len(rows), entity_type)

    @staticmethod
    def _read_file(source: Any, filename: Optional[str] = None, entity_type: Optional[str] = None) -> Tuple[str, List[Row]]:
        rows = parse_file(source, filename)
        detected = entity_type or identify_entity_type(rows)
        if detected not in ENTITY_TYPES:
            raise FileParseError(f"Could not tell whether {filename or source} holds clients, workers or tasks")
        return detected, rows

    def load_file(self, source: Any, filename: Optional[str] = None, entity_type: Optional[str] = None) -> str:
        return self.load_many([(source, filename, entity_type)])[0]

    def load_many(self, uploads: List[Tuple[Any, Optional[str], Optional[str]]]) -> List[str]:
        """
        Load several ``(source, filename, entity_type)`` files together. Every
        file is parsed before any table is replaced, so one unreadable file
        leaves the current data untouched.
        """
        parsed = [(self._read_file(source, filename, entity_type), filename or source) for source, filename, entity_type in uploads]

        data = self.data
        for (detected, rows), name in parsed:
            data = data.with_table(detected, rows)
            logger.info("Loaded %d %s from %s", len(rows), detected, name)
        self.data = data
        return [detected for (detected, _), _ in parsed]

    def load_files(self, clients_path: Optional[str] = None, workers_path: Optional[str] = None, tasks_path: Optional[str] = None) -> None:
        self.load_many([
            (path, None, entity_type)
            for entity_type, path in zip(ENTITY_TYPES, (clients_path, workers_path, tasks_path))
            if path
        ])

    def clear_table(self, entity_type: str) -> None:
        self.data = self.data.with_table(entity_type, [])

    def update_cell(self, entity_type: str, row_index: int, field: str, value: Any) -> Row:
        rows = self.data.table(entity_type)
        if not 0 <= row_index < len(rows):
            raise IndexError(f"No row {row_index} in {entity_type}")
        row = coerce_rows([{**rows[row_index], field: value}])[0]
        updated = list(rows)
        updated[row_index] = row
        self.data = self.data.with_table(entity_type, updated)
        return row

    # --- Rules ---
    def add_rule(self, raw_rule: Any) -> BusinessRule:
        rule = normalize_rule(raw_rule)
        self.data = self.data.with_rules(self.data.rules + [rule])
        logger.info("Added %s rule %s", rule.type, rule.id)
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        if rule_by_id(self.data.rules, rule_id) is None:
            return False
        self.data = self.data.with_rules([r for r in self.data.rules if r.id != rule_id])
        return True

    # --- Validation ---
    def validate_all(self):
        return validate_all(self.data)

    def validation_summary(self) -> Dict[str, int]:
        return summarize(self.validate_all())

    def rows_with_issues(self, entity_type: str) -> List[Row]:
        issues = issues_for_table(self.data, self.validate_all(), entity_type)
        return attach_issues(self.data.table(entity_type), issues, entity_type)

    # --- Corrections ---
    def apply_correction(self, correction: Any) -> Correction:
        if not isinstance(correction, Correction):
            correction = Correction.from_dict(correction)
        self.data = apply_correction(self.data, correction)
        return correction

    # --- Priorities & export ---
    def set_priorities(self, priorities: Mapping[str, Any]) -> Dict[str, float]:
        updated = dict(self.priorities)
        for key, value in priorities.items():
            weight = float(value)
            if not 0 <= weight <= 100:
                raise ValueError(f"Weight for {key} must be between 0 and 100, got {value}")
            updated[key] = weight
        self.priorities = updated
        return self.priorities

    def export_all(self, output_dir: Optional[str] = None) -> List[str]:
        return export_all(self.data, self.priorities, output_dir or config.EXPORT_DIR)

    def export_payloads(self) -> List[Dict[str, Any]]:
        return export_payloads(self.data, self.priorities)

    # --- AI collaborators ---
    def _agent(self):
        if self.gpt_agent is None:
            raise AIUnavailableError("AI features are disabled: set GITHUB_TOKEN to enable them")
        return self.gpt_agent

    def generate_rule_from_natural_language(self, user_rule_request: str) -> BusinessRule:
        """Generate a rule from natural language without adding it to the rules list"""
        return ai_agent.generate_rule(self._agent(), user_rule_request, self.data)

    def add_rule_from_nl(self, user_rule_request: str) -> BusinessRule:
        rule = self.generate_rule_from_natural_language(user_rule_request)
        return self.add_rule(rule)

    def get_recommended_rules(self) -> List[BusinessRule]:
        return ai_agent.recommend_rules(self._agent(), self.data)

    def analyze(self) -> List[str]:
        return ai_agent.analyze_data(self._agent(), self.data)

    def suggest_corrections(self) -> List[Correction]:
        return ai_agent.suggest_corrections(self._agent(), self.data, self.validate_all())
