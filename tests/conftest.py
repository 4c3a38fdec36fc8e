import os
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from agency_scheduler.database import Base  # noqa: E402
from agency_scheduler.models import activity_log, availability_rule, calendar_connection  # noqa: E402,F401
from agency_scheduler.models.booking import Booking  # noqa: E402,F401
from agency_scheduler.models.client import Client  # noqa: E402
from agency_scheduler.models.user import ADMIN_ROLE, CLIENT_ROLE, TEAM_MEMBER_ROLE, User  # noqa: E402


@pytest.fixture
def scheduling_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def people(scheduling_db):
    admin = User(email='admin@agency.test', name='Ada Admin', role=ADMIN_ROLE)
    host = User(email='host@agency.test', name='Hal Host', role=TEAM_MEMBER_ROLE)
    other_host = User(email='other@agency.test', name='Olive Other', role=TEAM_MEMBER_ROLE)
    portal_user = User(email='portal@client.test', name='Pat Portal', role=CLIENT_ROLE)
    client = Client(name='Acme Corp', email='contact@acme.test', company='Acme')
    scheduling_db.add_all([admin, host, other_host, portal_user, client])
    scheduling_db.commit()

    return SimpleNamespace(
        admin=admin,
        host=host,
        other_host=other_host,
        portal_user=portal_user,
        client=client,
    )
