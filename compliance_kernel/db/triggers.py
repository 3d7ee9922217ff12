"""
Module: compliance_kernel.db.triggers
Responsibility: Loading, installing, and verifying the PostgreSQL triggers
    that make change_log_entries append-only (Layer 2 of 2).  This is the
    database-level complement to the ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.

Invariants enforced:
    - change_log_entries rows: no UPDATE ever.
    - change_log_entries rows: no DELETE unless the transaction-local setting
      ``compliance.purging_tenant`` equals the row's tenant_id.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on violation (surfaced by SQLAlchemy as
      InternalError / DBAPIError).
    - FileNotFoundError if SQL files are missing from the sql/ directory.

Audit relevance:
    Raw SQL, bulk statements and direct psql sessions bypass the ORM.  The
    triggers still hold in those cases.
"""

from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from compliance_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

SQL_DIR = Path(__file__).parent / "sql"

TRIGGER_FILES = [
    "01_change_log_entry.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_change_log_entry_immutability_update",
    "trg_change_log_entry_immutability_delete",
]

PURGE_SETTING = "compliance.purging_tenant"


def _load_sql_file(filename: str) -> str:
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    parts = []
    for filename in TRIGGER_FILES:
        parts.append(f"-- Loading: {filename}")
        parts.append(_load_sql_file(filename))
    return "\n".join(parts)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install the change-log immutability triggers.

    Preconditions: Tables exist.  Engine is connected to PostgreSQL.
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed
        (CREATE OR REPLACE / DROP IF EXISTS, so re-running is safe).
    """
    with engine.connect() as conn:
        conn.execute(text(_load_all_trigger_sql()))
        conn.commit()
    logger.info("immutability_triggers_installed", extra={"triggers": ALL_TRIGGER_NAMES})


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove the change-log immutability triggers.

    WARNING: Only for tests and schema migrations.  Re-install immediately.
    """
    if not inspect(engine).has_table("change_log_entries"):
        return
    with engine.connect() as conn:
        conn.execute(text(_load_sql_file(DROP_FILE)))
        conn.commit()
    logger.warning("immutability_triggers_uninstalled")


def get_installed_triggers(engine: Engine) -> list[str]:
    """List the change-log immutability triggers present in pg_trigger."""
    with engine.connect() as conn:
        result = conn.execute(
            text("SELECT tgname FROM pg_trigger WHERE tgname = ANY(:names) ORDER BY tgname"),
            {"names": ALL_TRIGGER_NAMES},
        )
        return [row[0] for row in result]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES is installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)


def get_missing_triggers(engine: Engine) -> list[str]:
    """Triggers that should be installed but are not."""
    installed = set(get_installed_triggers(engine))
    return [name for name in ALL_TRIGGER_NAMES if name not in installed]
