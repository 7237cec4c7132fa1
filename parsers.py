"""
Spreadsheet ingestion.

Reads a CSV or Excel upload with pandas and coerces every cell into the types
the validation engine works with. Raw cell text is never re-parsed after this
point.
"""
import io
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from entities import CLIENTS, TASKS, WORKERS, InvalidAttributes, Row
from errors import FileParseError

logger = logging.getLogger(__name__)

# Header keys are compared lower-cased with punctuation stripped
STRING_LIST_KEYS = {"requestedtaskids", "skills", "requiredskills"}
NUMBER_LIST_KEYS = {"availableslots", "preferredphases"}
INTEGER_KEYS = {"prioritylevel", "duration", "maxloadperphase", "qualificationlevel", "maxconcurrent"}
ATTRIBUTES_KEY = "attributesjson"

EXCEL_EXTENSIONS = (".xlsx", ".xls", ".xlsm")


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(key).lower())


def _parse_int(text: str) -> Optional[int]:
    try:
        number = float(text)
    except (TypeError, ValueError):
        return None
    if not number.is_integer():
        return None
    return int(number)


def parse_number_list(text: str) -> List[int]:
    """Parse "1,2,3", "[1, 2, 3]" or a "1-3" range; unparseable items are dropped."""
    cleaned = text.replace("[", "").replace("]", "").strip()
    if not cleaned:
        return []
    range_match = re.fullmatch(r"(\d+)\s*-\s*(\d+)", cleaned)
    if range_match:
        start, end = int(range_match.group(1)), int(range_match.group(2))
        return list(range(start, end + 1))
    numbers = []
    for item in cleaned.split(","):
        number = _parse_int(item.strip())
        if number is not None:
            numbers.append(number)
    return numbers


def parse_attributes(text: str) -> Union[Dict[str, Any], InvalidAttributes]:
    if not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return InvalidAttributes(original_value=text)
    if not isinstance(parsed, dict):
        return InvalidAttributes(original_value=text)
    return parsed


def parse_value(key: str, value: Any) -> Any:
    """Coerce one raw cell according to its column header."""
    normalized = _normalize_key(key)
    if isinstance(value, (list, tuple)) and normalized in NUMBER_LIST_KEYS:
        # JSON rows can mix 2 and "2"
        numbers = [v if isinstance(v, int) and not isinstance(v, bool) else _parse_int(str(v).strip()) for v in value]
        return [n for n in numbers if n is not None]
    if not isinstance(value, str):
        return value

    if normalized in STRING_LIST_KEYS:
        return [item.strip() for item in value.split(",") if item.strip()]
    if normalized in NUMBER_LIST_KEYS:
        return parse_number_list(value)
    if normalized == ATTRIBUTES_KEY:
        return parse_attributes(value)
    if normalized in INTEGER_KEYS:
        number = _parse_int(value.strip())
        return value if number is None else number
    return value


def parse_rows(records: List[Dict[str, Any]]) -> List[Row]:
    return [{str(k).strip(): parse_value(str(k), v) for k, v in record.items()} for record in records]


def parse_file(source: Any, filename: Optional[str] = None) -> List[Row]:
    """
    Read the first sheet of an Excel workbook, or a CSV file, into typed rows.

    ``source`` may be a path, raw bytes or a binary file object; ``filename``
    decides the format when ``source`` is not a path.
    """
    name = filename or (source if isinstance(source, (str, os.PathLike)) else "")
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    try:
        if str(name).lower().endswith(EXCEL_EXTENSIONS):
            frame = pd.read_excel(source, sheet_name=0, dtype=str, keep_default_na=False)
        else:
            frame = pd.read_csv(source, dtype=str, keep_default_na=False, skipinitialspace=True)
    except Exception as e:
        logger.error("Error parsing file %s: %s", name, e)
        raise FileParseError("The file is corrupted or in an unsupported format.") from e

    rows = parse_rows(frame.to_dict(orient="records"))
    logger.info("Parsed %d row(s) from %s", len(rows), name or "upload")
    return rows


def identify_entity_type(rows: List[Row]) -> Optional[str]:
    """Guess which table a parsed file holds from its first row's headers."""
    if not rows:
        return None
    first = rows[0]
    if {"ClientID", "ClientName", "PriorityLevel"} <= first.keys():
        return CLIENTS
    if {"WorkerID", "WorkerName", "Skills"} <= first.keys():
        return WORKERS
    if {"TaskID", "TaskName", "Duration"} <= first.keys():
        return TASKS
    return None


def coerce_rows(rows: List[Dict[str, Any]]) -> List[Row]:
    """
    Coerce rows that arrive as JSON (API payloads, grid edits) the same way
    file cells are coerced. Values that are already typed pass through; the
    JSON form of the AttributesJSON sentinel is turned back into one.
    """
    coerced = []
    for record in rows:
        row = {}
        for key, value in record.items():
            if _normalize_key(key) == ATTRIBUTES_KEY and isinstance(value, dict) and value.get("error") and "originalValue" in value:
                value = InvalidAttributes(original_value=value["originalValue"])
            row[key] = parse_value(key, value)
        coerced.append(row)
    return coerced
