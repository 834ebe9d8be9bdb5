"""
Upgrade an existing calendar database in place.

Run when upgrading an existing deployment:
    python global_migrations.py [path/to/calendar.db]

Idempotent updates:
- Ensure user, recurring_event, calendar_event and recurrence_completion tables exist with all current columns
- Ensure the unique indexes that keep one row per series day and one independent event per day
- Fold legacy recurrence_exception rows into calendar_event tombstones
"""
import sqlite3
import sys
from pathlib import Path

DB_PATH = Path("instance") / "calendar.db"


def table_exists(cur, name: str) -> bool:
    cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,))
    return cur.fetchone() is not None


def column_exists(cur, table: str, column: str) -> bool:
    cur.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cur.fetchall())


def index_exists(cur, name: str) -> bool:
    cur.execute("SELECT name FROM sqlite_master WHERE type='index' AND name=?", (name,))
    return cur.fetchone() is not None


def add_column(cur, table: str, column: str, col_type: str, default_sql: str | None = None):
    if column_exists(cur, table, column):
        print(f"[skip] {table}.{column} exists")
        return
    cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
    if default_sql is not None:
        cur.execute(f"UPDATE {table} SET {column} = {default_sql} WHERE {column} IS NULL")
    print(f"[add] {table}.{column}")


def add_index(cur, name: str, ddl: str):
    if index_exists(cur, name):
        print(f"[skip] index {name} exists")
        return
    cur.execute(ddl)
    print(f"[add] index {name}")


def ensure_user(cur):
    if not table_exists(cur, "user"):
        cur.execute(
            """
            CREATE TABLE user (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username VARCHAR(80) NOT NULL UNIQUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        print("[add] user table created")
        return
    add_column(cur, "user", "created_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")


def ensure_recurring_event(cur):
    if not table_exists(cur, "recurring_event"):
        cur.execute(
            """
            CREATE TABLE recurring_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                title VARCHAR(200) NOT NULL,
                description TEXT,
                color VARCHAR(20) DEFAULT '#3b82f6',
                frequency VARCHAR(20) NOT NULL,
                interval INTEGER DEFAULT 1,
                days_of_week VARCHAR(50),
                start_day DATE NOT NULL,
                end_day DATE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(user_id) REFERENCES user(id)
            )
            """
        )
        print("[add] recurring_event table created")
    else:
        add_column(cur, "recurring_event", "description", "TEXT")
        add_column(cur, "recurring_event", "color", "VARCHAR(20) DEFAULT '#3b82f6'")
        add_column(cur, "recurring_event", "interval", "INTEGER DEFAULT 1", default_sql="1")
        add_column(cur, "recurring_event", "days_of_week", "VARCHAR(50)")
        add_column(cur, "recurring_event", "end_day", "DATE")
        add_column(cur, "recurring_event", "created_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")
        add_column(cur, "recurring_event", "updated_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")
        # Older rows used camelCase frequency names.
        cur.execute("UPDATE recurring_event SET frequency='every_n_days' WHERE frequency IN ('everyXDays', 'everyxdays')")
        cur.execute("UPDATE recurring_event SET frequency='days_of_week' WHERE frequency IN ('daysOfWeek', 'daysofweek', 'weekly')")

    add_index(
        cur,
        "ix_recurring_event_user_id",
        "CREATE INDEX ix_recurring_event_user_id ON recurring_event (user_id)",
    )
    add_index(
        cur,
        "ix_recurring_event_user_start",
        "CREATE INDEX ix_recurring_event_user_start ON recurring_event (user_id, start_day)",
    )


def ensure_calendar_event(cur):
    if not table_exists(cur, "calendar_event"):
        cur.execute(
            """
            CREATE TABLE calendar_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                recurrence_id INTEGER,
                day DATE NOT NULL,
                title VARCHAR(200) NOT NULL,
                description TEXT,
                color VARCHAR(20) DEFAULT '#3b82f6',
                completed BOOLEAN NOT NULL DEFAULT 0,
                completed_at TIMESTAMP,
                is_tombstone BOOLEAN NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(user_id) REFERENCES user(id),
                FOREIGN KEY(recurrence_id) REFERENCES recurring_event(id),
                CONSTRAINT uq_calendar_event_series_day UNIQUE (user_id, recurrence_id, day)
            )
            """
        )
        print("[add] calendar_event table created")
    else:
        add_column(cur, "calendar_event", "recurrence_id", "INTEGER")
        add_column(cur, "calendar_event", "description", "TEXT")
        add_column(cur, "calendar_event", "color", "VARCHAR(20) DEFAULT '#3b82f6'")
        add_column(cur, "calendar_event", "completed", "BOOLEAN NOT NULL DEFAULT 0")
        add_column(cur, "calendar_event", "completed_at", "TIMESTAMP")
        add_column(cur, "calendar_event", "is_tombstone", "BOOLEAN NOT NULL DEFAULT 0")
        add_column(cur, "calendar_event", "created_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")
        add_column(cur, "calendar_event", "updated_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")
        # Tables created before the constraint existed get it as a unique index.
        add_index(
            cur,
            "uq_calendar_event_series_day_idx",
            "CREATE UNIQUE INDEX uq_calendar_event_series_day_idx ON calendar_event (user_id, recurrence_id, day)",
        )

    add_index(
        cur,
        "uq_calendar_event_single_day",
        "CREATE UNIQUE INDEX uq_calendar_event_single_day ON calendar_event (user_id, day) "
        "WHERE recurrence_id IS NULL",
    )
    add_index(
        cur,
        "ix_calendar_event_user_day",
        "CREATE INDEX ix_calendar_event_user_day ON calendar_event (user_id, day)",
    )
    add_index(
        cur,
        "ix_calendar_event_recurrence_id",
        "CREATE INDEX ix_calendar_event_recurrence_id ON calendar_event (recurrence_id)",
    )


def ensure_recurrence_completion(cur):
    if not table_exists(cur, "recurrence_completion"):
        cur.execute(
            """
            CREATE TABLE recurrence_completion (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                recurrence_id INTEGER NOT NULL,
                day DATE NOT NULL,
                completed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(user_id) REFERENCES user(id),
                FOREIGN KEY(recurrence_id) REFERENCES recurring_event(id),
                CONSTRAINT uq_recurrence_completion_day UNIQUE (user_id, recurrence_id, day)
            )
            """
        )
        print("[add] recurrence_completion table created")
        return
    add_column(cur, "recurrence_completion", "completed_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")


def fold_recurrence_exceptions(cur):
    """Turn legacy per-day exception rows into tombstones, then drop the table."""
    if not table_exists(cur, "recurrence_exception"):
        print("[skip] no recurrence_exception table")
        return
    cur.execute(
        """
        INSERT OR IGNORE INTO calendar_event (user_id, recurrence_id, day, title, completed, is_tombstone)
        SELECT ex.user_id, ex.recurrence_id, ex.day, re.title, 0, 1
        FROM recurrence_exception ex
        JOIN recurring_event re ON re.id = ex.recurrence_id
        """
    )
    print(f"[add] {cur.rowcount} tombstones from recurrence_exception")
    cur.execute(
        """
        UPDATE calendar_event SET is_tombstone = 1
        WHERE recurrence_id IS NOT NULL AND is_tombstone = 0
          AND EXISTS (
            SELECT 1 FROM recurrence_exception ex
            WHERE ex.user_id = calendar_event.user_id
              AND ex.recurrence_id = calendar_event.recurrence_id
              AND ex.day = calendar_event.day
          )
        """
    )
    cur.execute("DROP TABLE recurrence_exception")
    print("[drop] recurrence_exception")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    db_path = Path(argv[0]) if argv else DB_PATH
    if not db_path.exists():
        print(f"Database not found at {db_path}. Start the app once to create it.")
        return
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    try:
        ensure_user(cur)
        ensure_recurring_event(cur)
        ensure_calendar_event(cur)
        ensure_recurrence_completion(cur)
        fold_recurrence_exceptions(cur)
        conn.commit()
        print("Global migrations complete.")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
