import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Request
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore
from google.oauth2 import service_account

from .. import config
from ..errors import BadRequest, NotFound, StoreError


logger = logging.getLogger(__name__)


def create_client(service_account_info: Optional[Dict[str, Any]] = None) -> firestore.AsyncClient:
    """Create the async Firestore client from service-account credentials."""
    info = service_account_info or config.load_service_account_info()
    credentials = service_account.Credentials.from_service_account_info(info)
    return firestore.AsyncClient(project=info["project_id"], credentials=credentials)


def get_db(request: Request) -> firestore.AsyncClient:
    """FastAPI dependency returning the client created in the app lifespan."""
    return request.app.state.db


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Translate Firestore client failures into StoreError."""
    try:
        yield
    except (GoogleAPIError, GoogleAuthError) as exc:
        logger.error("Firestore call failed while trying to %s: %s", action, exc)
        raise StoreError(f"Failed to {action}") from exc


def user_ref(db, user_id: str):
    return db.collection(config.USERS_COLLECTION).document(user_id)


async def get_user_data(db, user_id: str) -> Dict[str, Any]:
    """Return the user's fields, raising NotFound when the document is absent."""
    with store_errors("load user"):
        snap = await user_ref(db, user_id).get()
    if not snap.exists:
        raise NotFound("User not found")
    return snap.to_dict() or {}


async def list_users(db) -> List[Any]:
    with store_errors("list users"):
        return list(await db.collection(config.USERS_COLLECTION).get())


async def list_collections(doc_ref) -> List[Any]:
    with store_errors("list subcollections"):
        return [collection async for collection in doc_ref.collections()]


async def read_collection(collection_ref) -> List[Any]:
    with store_errors(f"read collection {collection_ref.id}"):
        return list(await collection_ref.get())


def document_ref(db, doc_path: str):
    """Resolve a slash separated document path, rejecting malformed ones."""
    segments = doc_path.strip("/").split("/")
    if not all(segments):
        raise BadRequest("Invalid document path")
    try:
        return db.document(*segments)
    except ValueError as exc:
        raise BadRequest("Invalid document path") from exc


async def update_user(db, user_id: str, updates: Dict[str, Any]) -> None:
    with store_errors("update user"):
        await user_ref(db, user_id).update(updates)
