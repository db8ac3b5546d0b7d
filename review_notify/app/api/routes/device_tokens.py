"""Device token registration routes."""

from fastapi import APIRouter, Depends, Path, status

from ...core.exceptions import ErrorCode, StoreError
from ...models.api.notification_schemas import (
    DeviceTokenRequest,
    DeviceTokenResponse,
    MessageResponse
)
from ...repositories.mongodb.device_token_repository import DeviceTokenRepository
from ...utils.logging import get_logger
from ..deps import get_device_token_store

logger = get_logger(__name__)
router = APIRouter()


@router.post("/", response_model=DeviceTokenResponse, status_code=status.HTTP_201_CREATED)
async def register_device_token(
    request: DeviceTokenRequest,
    store: DeviceTokenRepository = Depends(get_device_token_store)
):
    """Register a push token, moving it from any previous owner."""
    device_token = await store.upsert(request.user_id, request.token, request.platform)

    logger.info(
        "Device token registered",
        user_id=device_token.user_id,
        platform=device_token.platform.value
    )
    return DeviceTokenResponse.from_domain(device_token)


@router.delete("/{token}", response_model=MessageResponse)
async def remove_device_token(
    token: str = Path(..., description="Push token to revoke"),
    store: DeviceTokenRepository = Depends(get_device_token_store)
):
    if not await store.remove(token):
        raise StoreError(
            "Device token not found",
            error_code=ErrorCode.STORE_RECORD_NOT_FOUND,
            operation="remove"
        )
    return MessageResponse(message="Device token removed")
