import logging
from typing import Any, Iterable, List, Optional

from entities import ENTITY_TYPES, ID_FIELDS, Correction, CorrectionType, DataSet, Row
from parsers import coerce_rows

logger = logging.getLogger(__name__)


def _as_values(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _union(existing: Any, new_value: Any) -> List[Any]:
    merged: List[Any] = []
    for item in _as_values(existing) + _as_values(new_value):
        if item not in merged:
            merged.append(item)
    return merged


def find_entity_type(data: DataSet, row_id: Any) -> Optional[str]:
    for entity_type in ENTITY_TYPES:
        id_field = ID_FIELDS[entity_type]
        if any(row.get(id_field) == row_id for row in data.table(entity_type)):
            return entity_type
    return None


def apply_correction(data: DataSet, correction: Correction) -> DataSet:
    """
    Write one corrected field and return the new DataSet.

    REPLACE overwrites the field. APPEND treats the current value as a set and
    unions the new value(s) into it. The result is not re-validated here; the
    next validation pass decides whether the issue is gone.
    """
    entity_type = correction.entity_type or find_entity_type(data, correction.row_id)
    if entity_type not in ENTITY_TYPES:
        logger.warning("No table holds row %r; correction to %s ignored", correction.row_id, correction.field)
        return data

    id_field = ID_FIELDS[entity_type]
    rows = data.table(entity_type)
    index = next((i for i, row in enumerate(rows) if row.get(id_field) == correction.row_id), None)
    if index is None:
        logger.warning("Row %r not found in %s; correction to %s ignored", correction.row_id, entity_type, correction.field)
        return data

    # Suggested values often arrive as cell text ("3", "welding")
    new_value = coerce_rows([{correction.field: correction.new_value}])[0][correction.field]

    row: Row = dict(rows[index])
    if correction.correction_type == CorrectionType.APPEND:
        row[correction.field] = _union(row.get(correction.field), new_value)
    else:
        row[correction.field] = new_value

    updated = list(rows)
    updated[index] = row
    logger.info("Applied %s correction to %s %s.%s", correction.correction_type.value, entity_type, correction.row_id, correction.field)
    return data.with_table(entity_type, updated)


def parse_corrections(raw_items: Iterable[Any]) -> List[Correction]:
    """Turn assistant output into corrections, dropping malformed entries."""
    corrections = []
    for raw in raw_items:
        try:
            corrections.append(Correction.from_dict(raw))
        except ValueError as e:
            logger.warning("Dropping correction %r: %s", raw, e)
    return corrections
