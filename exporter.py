import json
import logging
import os
from typing import Any, Dict, List, Mapping

import pandas as pd

from entities import CLIENTS, TASKS, WORKERS, DataSet, InvalidAttributes, Row, is_invalid_attributes

logger = logging.getLogger(__name__)

CLEANED_FILENAMES = {
    CLIENTS: "clients_cleaned.csv",
    WORKERS: "workers_cleaned.csv",
    TASKS: "tasks_cleaned.csv",
}
RULES_FILENAME = "rules.json"


def _cell(value: Any) -> Any:
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(v) for v in value)
    if is_invalid_attributes(value):
        # Write back what the user typed so it can be fixed in the sheet
        return value.original_value if isinstance(value, InvalidAttributes) else value["originalValue"]
    if isinstance(value, Mapping):
        return json.dumps(value)
    return value


def prepare_for_csv(rows: List[Row]) -> List[Row]:
    return [{key: _cell(value) for key, value in row.items() if key != "errors"} for row in rows]


def rules_config(data: DataSet, priorities: Mapping[str, float]) -> Dict[str, Any]:
    return {
        "rules": [rule.to_dict() for rule in data.rules],
        "prioritization": dict(priorities),
    }


def export_payloads(data: DataSet, priorities: Mapping[str, float]) -> List[Dict[str, Any]]:
    """Build every export file in memory: cleaned CSVs for non-empty tables, then rules.json."""
    files = []
    for entity_type, filename in CLEANED_FILENAMES.items():
        rows = data.table(entity_type)
        if not rows:
            continue
        content = pd.DataFrame(prepare_for_csv(rows)).to_csv(index=False)
        files.append({"name": filename, "content": content, "type": "text/csv"})

    rules_json = json.dumps(rules_config(data, priorities), indent=2)
    files.append({"name": RULES_FILENAME, "content": rules_json, "type": "application/json"})

    for f in files:
        f["size"] = len(f["content"].encode("utf-8"))
    return files


def export_all(data: DataSet, priorities: Mapping[str, float], output_dir: str) -> List[str]:
    """Write the export files into ``output_dir`` and return their paths."""
    os.makedirs(output_dir, exist_ok=True)
    paths = []
    for f in export_payloads(data, priorities):
        path = os.path.join(output_dir, f["name"])
        with open(path, "w", encoding="utf-8", newline="") as handle:
            handle.write(f["content"])
        paths.append(path)
    logger.info("Exported %d file(s) to %s", len(paths), output_dir)
    return paths
