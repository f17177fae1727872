import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('APP_ENV', 'test')

from scheduler.database import Base  # noqa: E402
from scheduler.models.appointment import Appointment  # noqa: E402
from scheduler.models.calendar import Calendar  # noqa: E402
from scheduler.models.instance import Instance  # noqa: E402
from scheduler.models.service import Service  # noqa: E402

from scheduling_fakes import make_business_hours  # noqa: E402

SCHEDULING_TABLES = [Instance.__table__, Service.__table__, Calendar.__table__, Appointment.__table__]


@pytest.fixture
def scheduling_db():
    """Session on an in-memory database seeded with one clinic and three calendars."""
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=SCHEDULING_TABLES)

    db = testing_session_local()
    try:
        db.add(Instance(id='inst-1', name='Clinic', timezone='America/Sao_Paulo', business_hours=make_business_hours()))
        db.add(Service(id='svc-1', instance_id='inst-1', name='Consultation', duration_minutes=30))
        db.add(Calendar(id='cal-b', instance_id='inst-1', external_calendar_id='b@group', name='Room B', priority=2))
        db.add(Calendar(id='cal-a', instance_id='inst-1', external_calendar_id='a@group', name='Room A', priority=1))
        db.add(
            Calendar(
                id='cal-off',
                instance_id='inst-1',
                external_calendar_id='off@group',
                name='Closed',
                priority=0,
                is_active=False,
            )
        )
        db.commit()
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(SCHEDULING_TABLES)))
