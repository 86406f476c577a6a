from fastapi import APIRouter, Depends

from geopresence.auth import decode_access_token
from geopresence.database import get_storage
from geopresence.exceptions import UserNotFound
from geopresence.schemas.user import Location, LocationUpdate, SuccessResponse, User, UsersResponse
from geopresence.storage.base import StorageAdapter

router = APIRouter()


@router.get("/users", response_model=UsersResponse)
async def get_users(storage: StorageAdapter = Depends(get_storage)):
    """All registered users, without password hashes."""
    users = await storage.list_users()
    return {"success": True, "users": [user.public() for user in users]}


@router.post("/location", response_model=SuccessResponse)
async def update_location(payload: LocationUpdate, storage: StorageAdapter = Depends(get_storage)):
    username = decode_access_token(payload.token)
    location = Location(lat=payload.lat, lng=payload.lng)

    def move(user: User) -> User:
        return user.model_copy(update={"location": location})

    if await storage.update_user(username, move) is None:
        raise UserNotFound(username)
    return {"success": True}
