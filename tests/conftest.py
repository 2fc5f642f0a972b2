import pytest
import pytest_asyncio

from lcmcore.db import LifecycleDB
from lcmcore.persistence import InMemoryLifecycleStore, SQLiteLifecycleStore


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("LCM_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("LCM_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


@pytest_asyncio.fixture(params=["inmemory", "sqlite", "sqlmodel"])
async def store(request, tmp_path):
    if request.param == "inmemory":
        backend = InMemoryLifecycleStore()
    elif request.param == "sqlite":
        backend = SQLiteLifecycleStore(tmp_path / "lcm.db")
    else:
        backend = LifecycleDB(f"sqlite+aiosqlite:///{tmp_path / 'lcm_sqlmodel.db'}")
    yield backend
    await backend.close()
