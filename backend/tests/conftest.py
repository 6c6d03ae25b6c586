from datetime import datetime
import pytest
from fastapi.testclient import TestClient

from lessonbook import services
from lessonbook.config import Settings
from lessonbook.database import SqlEntityStore
from lessonbook.main import create_app
from lessonbook.repositories import JsonFileStore

# Noon keeps "today" well away from midnight while a test runs.
NOW = datetime.now().replace(hour=12, minute=0, second=0, microsecond=0)


@pytest.fixture
def json_store(tmp_path):
    return JsonFileStore(tmp_path / "data")


@pytest.fixture
def sql_store(tmp_path):
    store = SqlEntityStore(f"sqlite:///{tmp_path / 'lessonbook.db'}", timeout=5)
    yield store
    store.close()


@pytest.fixture(params=["json", "sql"])
def store(request):
    """Run the test once per store backend."""
    return request.getfixturevalue(f"{request.param}_store")


class Services:
    def __init__(self, store, clock=lambda: NOW):
        self.store = store
        self.students = services.StudentService(store)
        self.packages = services.LessonPackageService(store)
        self.lessons = services.LessonService(store, clock=clock)
        self.documents = services.DocumentService(store)
        self.stats = services.StatsService(store, clock=clock)


@pytest.fixture
def svc(store):
    return Services(store)


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "api-data"))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    app = create_app(Settings())
    yield TestClient(app)
    app.state.store.close()
