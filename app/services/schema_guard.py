from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Enum, MetaData, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

import app.models  # noqa: F401  registers every table on Base.metadata
from app.db import Base
from app.services.local_time import utcnow

ALEMBIC_TABLE = "alembic_version"


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


@dataclass(frozen=True, slots=True)
class ExpectedSchema:
    columns: dict[str, frozenset[str]]
    enums: dict[str, frozenset[str]]


def expected_schema(metadata: MetaData | None = None) -> ExpectedSchema:
    """Collect the tables, columns and database enum labels the ORM models rely on."""
    metadata = metadata if metadata is not None else Base.metadata
    columns: dict[str, frozenset[str]] = {ALEMBIC_TABLE: frozenset({"version_num"})}
    enums: dict[str, set[str]] = {}
    for table in metadata.sorted_tables:
        columns[table.name] = frozenset(column.name for column in table.columns)
        for column in table.columns:
            if isinstance(column.type, Enum) and column.type.name:
                enums.setdefault(column.type.name, set()).update(column.type.enums)
    return ExpectedSchema(columns=columns, enums={name: frozenset(labels) for name, labels in enums.items()})


def _column_issue(inspector: Any, table_name: str, required: frozenset[str]) -> str | None:
    try:
        present = {str(item.get("name")) for item in inspector.get_columns(table_name)}
    except SQLAlchemyError as exc:
        return f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}"
    missing = sorted(required - present)
    if not missing:
        return None
    return f"MISSING_COLUMNS:{table_name}:{','.join(missing)}"


def _database_enums(inspector: Any) -> dict[str, set[str]]:
    labels_by_name: dict[str, set[str]] = {}
    for item in inspector.get_enums() or []:
        name = str(item.get("name") or "").strip()
        labels = item.get("labels")
        if name and isinstance(labels, list):
            labels_by_name[name] = {str(label) for label in labels}
    return labels_by_name


def _revision_issue(engine: Engine) -> str | None:
    try:
        with engine.connect() as connection:
            revision = connection.execute(text(f"SELECT version_num FROM {ALEMBIC_TABLE} LIMIT 1")).scalar()
    except SQLAlchemyError as exc:
        return f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}"
    if revision is None or not str(revision).strip():
        return "ALEMBIC_VERSION_EMPTY"
    return None


def verify_runtime_schema(engine: Engine, expected: ExpectedSchema | None = None) -> SchemaGuardResult:
    """Compare the live database against the mapped models.

    Missing tables, columns and enum labels are issues. Enum types the
    database cannot report on are warnings, since SQLite has none.
    """
    expected = expected if expected is not None else expected_schema()
    checked_at_utc = utcnow()
    inspector = inspect(engine)

    issues = [
        issue
        for table_name, required in sorted(expected.columns.items())
        if (issue := _column_issue(inspector, table_name, required)) is not None
    ]
    warnings: list[str] = []

    try:
        database_enums = _database_enums(inspector)
    except (SQLAlchemyError, NotImplementedError, AttributeError) as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
    else:
        for enum_name, required_labels in sorted(expected.enums.items()):
            present_labels = database_enums.get(enum_name)
            if present_labels is None:
                warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            elif missing := sorted(required_labels - present_labels):
                issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")

    revision_issue = _revision_issue(engine)
    if revision_issue is not None:
        issues.append(revision_issue)

    return SchemaGuardResult(ok=not issues, checked_at_utc=checked_at_utc, issues=issues, warnings=warnings)
