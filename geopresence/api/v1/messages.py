from fastapi import APIRouter, Depends

from geopresence.config import settings
from geopresence.database import get_storage
from geopresence.schemas.message import MessagesResponse
from geopresence.storage.base import StorageAdapter

router = APIRouter()


@router.get("/messages/{from_user}/{to_user}", response_model=MessagesResponse)
async def get_conversation(from_user: str, to_user: str, storage: StorageAdapter = Depends(get_storage)):
    """Latest messages exchanged between the two users in either direction, oldest first."""
    messages = await storage.list_conversation(from_user, to_user, limit=settings.CONVERSATION_LIMIT)
    return {"success": True, "messages": messages}
