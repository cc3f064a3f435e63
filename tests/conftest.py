"""
Pytest configuration and an in-memory stand-in for the async Firestore client.
"""

import copy
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient
from google.api_core.exceptions import NotFound as DocumentNotFound
from google.api_core.exceptions import ServiceUnavailable
from google.cloud.firestore_v1.transforms import ArrayRemove, ArrayUnion


class FakeSnapshot:
    def __init__(self, reference: "FakeDocumentRef", data: Optional[Dict[str, Any]]):
        self.reference = reference
        self.id = reference.id
        self.exists = data is not None
        self._data = copy.deepcopy(data)

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data)


class FakeDocumentRef:
    def __init__(self, db: "FakeFirestore", path: str):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def collection(self, name: str) -> "FakeCollectionRef":
        return FakeCollectionRef(self._db, f"{self.path}/{name}")

    async def get(self) -> FakeSnapshot:
        self._db.touch()
        return FakeSnapshot(self, self._db.docs.get(self.path))

    async def update(self, updates: Dict[str, Any]) -> None:
        self._db.touch()
        if self.path not in self._db.docs:
            raise DocumentNotFound(f"No document to update: {self.path}")
        data = self._db.docs[self.path]
        for field, value in updates.items():
            if isinstance(value, ArrayUnion):
                current = list(data.get(field) or [])
                current.extend(v for v in value.values if v not in current)
                data[field] = current
            elif isinstance(value, ArrayRemove):
                data[field] = [v for v in data.get(field) or [] if v not in value.values]
            else:
                data[field] = value

    async def collections(self):
        self._db.touch()
        prefix = self.path + "/"
        names = []
        for path in self._db.docs:
            if path.startswith(prefix):
                name = path[len(prefix):].split("/", 1)[0]
                if name not in names:
                    names.append(name)
        for name in names:
            yield FakeCollectionRef(self._db, prefix + name)


class FakeCollectionRef:
    def __init__(self, db: "FakeFirestore", path: str):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def document(self, doc_id: str) -> FakeDocumentRef:
        return FakeDocumentRef(self._db, f"{self.path}/{doc_id}")

    async def get(self) -> list:
        self._db.touch()
        prefix = self.path + "/"
        return [
            FakeSnapshot(FakeDocumentRef(self._db, path), data)
            for path, data in self._db.docs.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]


class FakeFirestore:
    """Documents keyed by full path; collections exist implicitly."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.calls = 0
        self.fail = False

    def touch(self) -> None:
        self.calls += 1
        if self.fail:
            raise ServiceUnavailable("firestore unavailable")

    def put(self, path: str, data: Dict[str, Any]) -> None:
        self.docs[path] = copy.deepcopy(data)

    def collection(self, name: str) -> FakeCollectionRef:
        return FakeCollectionRef(self, name)

    def document(self, *segments: str) -> FakeDocumentRef:
        path = "/".join(segments)
        if len(path.split("/")) % 2:
            raise ValueError("A document must have an even number of path elements")
        return FakeDocumentRef(self, path)


@pytest.fixture
def fake_db() -> FakeFirestore:
    """alice has two periods with 2024-01 approved; bob has none."""
    db = FakeFirestore()
    db.put("users/alice", {"username": "alice", "approved": ["2024-01"], "months": ["2024-01", "2024-02"]})
    db.put("users/alice/2024-02/2024-02-01", {"dayType": "office", "expenses": [{"amount": 5, "label": "taxi"}]})
    db.put("users/alice/2024-01/2024-01-03", {"dayType": "travel", "expenses": [{"amount": 10, "label": "bus"}]})
    db.put("users/alice/2024-01/2024-01-04", {"dayType": "office", "expenses": [{"amount": 20, "label": "lunch"}]})
    db.put("users/bob", {"username": "bob", "approved": []})
    return db


@pytest.fixture
def empty_db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def make_client():
    from expense_backend.main import app
    from expense_backend.services.firestore import get_db

    def _make(db: FakeFirestore) -> TestClient:
        app.dependency_overrides[get_db] = lambda: db
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def client(make_client, fake_db) -> TestClient:
    return make_client(fake_db)
