"""
Create the planner tables if they do not exist and backfill the recurrence columns.
Usage:  python migrate_recurrence.py
"""
from app import app, db
from models import CalendarEvent, Todo, Assignment, RecurrenceException

RECURRENCE_COLUMNS = (
    ('recurrence', 'VARCHAR(20)'),
    ('recurrence_until', 'DATE'),
)


def _ensure_recurrence_columns(conn, table_name):
    cols = {row[1] for row in conn.execute(db.text(f"PRAGMA table_info({table_name})"))}
    added = []
    for name, column_type in RECURRENCE_COLUMNS:
        if name not in cols:
            conn.execute(db.text(f"ALTER TABLE {table_name} ADD COLUMN {name} {column_type}"))
            added.append(name)
            print(f"Added {table_name}.{name} column")
    return added


def main():
    with app.app_context():
        for model in (CalendarEvent, Todo, Assignment, RecurrenceException):
            model.__table__.create(db.engine, checkfirst=True)
        conn = db.engine.connect()
        try:
            added = {}
            for model in (CalendarEvent, Todo, Assignment):
                added[model.__tablename__] = _ensure_recurrence_columns(conn, model.__tablename__)
            conn.execute(db.text(
                "CREATE UNIQUE INDEX IF NOT EXISTS ix_recurrence_exception_key "
                "ON recurrence_exception (parent_type, parent_id, exception_date)"
            ))
            conn.commit()
            print("recurrence tables are ensured.")
            return added
        finally:
            conn.close()


if __name__ == '__main__':
    main()
