from fastapi.testclient import TestClient
from sqlalchemy import inspect

from marketplace.database import Base, engine
from marketplace.main import app


def test_lifespan_creates_schema():
    Base.metadata.drop_all(bind=engine)

    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
        assert "orders" in inspect(engine).get_table_names()
