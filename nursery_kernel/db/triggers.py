"""
Module: nursery_kernel.db.triggers
Responsibility: Loading, installing, and verifying PostgreSQL append-only
    triggers.  This is the database-level complement to the ORM listeners in
    db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.

Invariants enforced (PostgreSQL only):
    - unit_events rows: no UPDATE, no DELETE.
    - units rows: no DELETE; code never changes.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on any trigger violation (surfaces as
      InternalError / DatabaseError through SQLAlchemy).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

# Directory containing SQL trigger files
SQL_DIR = Path(__file__).parent / "sql"

# Ordered list of trigger files to install (numbered for predictable order)
TRIGGER_FILES = [
    "01_unit_event.sql",
    "02_unit.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_unit_event_immutability_update",
    "trg_unit_event_immutability_delete",
    "trg_unit_deletion_protection",
    "trg_unit_code_immutability",
]


def _load_sql_file(filename: str) -> str:
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    """Concatenate all trigger SQL files in numbered order."""
    sql_parts = []
    for filename in TRIGGER_FILES:
        sql_parts.append(f"-- Loading: {filename}")
        sql_parts.append(_load_sql_file(filename))
        sql_parts.append("")
    return "\n".join(sql_parts)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level append-only triggers.

    Preconditions: Tables must exist (call after create_all).
        Engine must be connected to PostgreSQL.
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed.
        Trigger functions use CREATE OR REPLACE (idempotent).
    """
    with engine.connect() as conn:
        conn.execute(text(_load_all_trigger_sql()))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level triggers.

    Only for test teardown and migrations.  Re-install immediately after.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_sql_file(DROP_FILE)))
        conn.commit()


def get_installed_triggers(engine: Engine) -> list[str]:
    """Return the names of the kernel's triggers present in pg_trigger."""
    trigger_list = ", ".join(f"'{name}'" for name in ALL_TRIGGER_NAMES)
    check_sql = f"""
    SELECT tgname FROM pg_trigger
    WHERE tgname IN ({trigger_list})
    ORDER BY tgname;
    """

    with engine.connect() as conn:
        result = conn.execute(text(check_sql))
        return [row[0] for row in result]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES is installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)
