import os
import sys
import tempfile
from pathlib import Path

import pytest

SERVICE_DIR = Path(__file__).resolve().parent.parent
if str(SERVICE_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICE_DIR))

# repo.py builds its engine at import time
_DB_FILE = Path(tempfile.gettempdir()) / f"inventory-test-{os.getpid()}.sqlite3"
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_FILE}"


@pytest.fixture
def inventory_db():
    import repo

    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    yield repo
    repo.Base.metadata.drop_all(repo.engine)


@pytest.fixture
def inventory(inventory_db):
    r = inventory_db.InventoryRepo()
    r.upsert("bk-1", "Daily Bread", price_minor=100_000, stock_quantity=5)
    r.upsert("bk-2", "Psalms for Today", price_minor=250_000, stock_quantity=1)
    r.upsert("bk-off", "Out of Print", price_minor=50_000, stock_quantity=10, is_active=False)
    return r


@pytest.fixture
def client(inventory):
    from fastapi.testclient import TestClient

    import main

    return TestClient(main.app)
