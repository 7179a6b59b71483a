from __future__ import annotations

import logging

from sqlalchemy import inspect

import examsched.models  # noqa: F401
from examsched.db.base import Base
from examsched.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "venues": {"id", "name", "capacity", "school_id", "is_active", "availability_windows"},
    "exam_periods": {"id", "semester_id", "start_date", "end_date", "slots_per_day"},
    "exam_assignments": {
        "id",
        "batch_id",
        "semester_id",
        "session_key",
        "exam_date",
        "slot_number",
        "venue_allocations",
        "superseded_by_id",
    },
    "scheduling_batches": {"id", "kind", "status", "semester_id", "policy", "not_attempted_count"},
    "scheduling_failures": {
        "id",
        "batch_id",
        "session_key",
        "unit_code",
        "unit_name",
        "class_names",
        "lecturer_name",
        "reason_code",
        "conflict_details",
        "status",
        "supersedes_id",
        "superseded_by_id",
    },
    "activity_logs": {"id", "actor_id", "action", "entity_id"},
}


def find_schema_gaps(connection) -> tuple[list[str], dict[str, list[str]]]:
    inspector = inspect(connection)
    table_names = set(inspector.get_table_names())
    missing_tables = sorted(name for name in REQUIRED_COLUMNS if name not in table_names)
    missing_columns: dict[str, list[str]] = {}
    for table_name, required in REQUIRED_COLUMNS.items():
        if table_name not in table_names:
            continue
        existing = {item["name"] for item in inspector.get_columns(table_name)}
        missing = sorted(required - existing)
        if missing:
            missing_columns[table_name] = missing
    return missing_tables, missing_columns


def _assert_required_columns() -> None:
    with engine.begin() as connection:
        missing_tables, missing_columns = find_schema_gaps(connection)
    if missing_tables:
        raise RuntimeError(f"Missing required tables: {', '.join(missing_tables)}")
    if missing_columns:
        flattened = [f"{table}.{column}" for table, columns in missing_columns.items() for column in columns]
        raise RuntimeError(f"Missing required columns: {', '.join(flattened)}")


def ensure_runtime_schema_compatibility() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        _assert_required_columns()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc
