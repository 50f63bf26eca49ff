import os, sys, pytest
# Ensure backend directory is on path so 'casedesk' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from casedesk import create_app, get_db, remove_db
from casedesk.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import casedesk.models.service_request  # noqa: F401
import casedesk.models.routing  # noqa: F401
import casedesk.models.audit  # noqa: F401

TEST_CONFIG = {
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'casedesk-test-secret-key-0123456789abcdef',
    'SCHEDULER_ENABLED': False,
    'LOG_LEVEL': 'DEBUG',
}

@pytest.fixture(scope='session', autouse=True)
def app_instance():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app

@pytest.fixture(autouse=True)
def clean_tables(app_instance):
    yield
    session = get_db()
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    remove_db()

@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance

@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()

@pytest.fixture()
def session(app_context):
    return get_db()
