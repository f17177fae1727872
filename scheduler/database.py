from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from scheduler.core import config


connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}
engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())

        with engine.begin() as connection:
            if 'services' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('services')}
                migration_steps = [
                    ('buffer_before_minutes', 'ALTER TABLE services ADD COLUMN buffer_before_minutes INTEGER DEFAULT 0'),
                    ('buffer_after_minutes', 'ALTER TABLE services ADD COLUMN buffer_after_minutes INTEGER DEFAULT 0'),
                ]
                for column_name, statement in migration_steps:
                    if column_name not in existing_columns:
                        connection.execute(text(statement))

            if 'calendars' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_calendars_instance_priority ON calendars(instance_id, priority)')
                )

            if 'appointments' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_calendar_start ON appointments(calendar_id, start_datetime)')
                )
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_appointments_status_start ON appointments(status, start_datetime)')
                )

        _scheduling_schema_checked = True
