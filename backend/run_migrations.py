"""Simple migration runner for SQLite using provided SQL files in migrations/"""
from pathlib import Path
import sqlite3
import sys

BASE = Path(__file__).parent
if str(BASE) not in sys.path:
    sys.path.insert(0, str(BASE))
from studybuddy.config import settings
from studybuddy.database import create_db_and_tables

MIGRATIONS = sorted((BASE / "migrations").glob("*.sql"))


def run():
    """Create the schema, then execute SQL migration files against the SQLite database.

    The function applies every `migrations/*.sql` file in lexical order.
    It is intended for local development and quick bootstrapping of a
    demo catalog; only `sqlite:///` URLs are supported.
    """
    if not settings.DATABASE_URL.startswith("sqlite:///"):
        raise SystemExit(f"run_migrations only supports sqlite URLs, got {settings.DATABASE_URL}")
    db_path = settings.DATABASE_URL[len("sqlite:///"):]
    print("Using database:", db_path)
    create_db_and_tables()
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    for m in MIGRATIONS:
        print("Applying:", m.name)
        sql = m.read_text(encoding="utf-8")
        cur.executescript(sql)
    conn.commit()
    conn.close()
    print("Migrations applied.")

if __name__ == '__main__':
    run()
