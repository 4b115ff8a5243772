"""
Request dependencies: cookie identity and the app-owned services.
"""
import json
import logging
from dataclasses import dataclass
from typing import Annotated, Optional
from urllib.parse import unquote

from fastapi import Cookie, Depends, HTTPException, Request, status

from ..services import ChunkedUploadOrchestrator, FileMetadataStore, ObjectStorage, ThumbnailService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    name: str = ""
    role: Optional[str] = None


def get_current_user(user: Annotated[Optional[str], Cookie()] = None) -> AuthUser:
    """
    Identity from the `user` cookie set by the login flow.

    The cookie carries JSON {id, email, name, role}, optionally URL-encoded;
    anything else is treated as unauthenticated.
    """
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        data = json.loads(unquote(user))
    except json.JSONDecodeError:
        logger.warning("Malformed user cookie")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    if not isinstance(data, dict) or not data.get("id") or not data.get("email"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    return AuthUser(
        id=str(data["id"]),
        email=data["email"],
        name=data.get("name", ""),
        role=data.get("role")
    )


def require_owner(user: AuthUser, owner_id: Optional[str]) -> None:
    """Users may only upload into their own space"""
    if owner_id and str(owner_id) != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def get_orchestrator(request: Request) -> ChunkedUploadOrchestrator:
    return request.app.state.orchestrator


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_thumbnails(request: Request) -> ThumbnailService:
    return request.app.state.thumbnails


def get_metadata_store(request: Request) -> FileMetadataStore:
    return request.app.state.metadata_store


CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
Orchestrator = Annotated[ChunkedUploadOrchestrator, Depends(get_orchestrator)]
Storage = Annotated[ObjectStorage, Depends(get_storage)]
Thumbnails = Annotated[ThumbnailService, Depends(get_thumbnails)]
MetadataStore = Annotated[FileMetadataStore, Depends(get_metadata_store)]
