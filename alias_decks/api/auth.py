"""API key management routes (admin)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from alias_decks.auth.security import create_api_key, is_admin_login, verify_admin_token
from alias_decks.db.models import ApiKey
from alias_decks.db.session import get_db
from alias_decks.exceptions import DeckServiceError
from alias_decks.schemas.schemas import ApiKeyCreate, ApiKeyInfo, ApiKeyResponse

router = APIRouter(prefix="/v1/admin/api-keys", tags=["Admin - API Keys"])


class ApiKeyNotFoundError(DeckServiceError):
    status_code = 404
    default_message = "API key not found"


async def _get_key_or_404(db: AsyncSession, key_id: str) -> ApiKey:
    result = await db.execute(select(ApiKey).where(ApiKey.id == key_id))
    api_key = result.scalar_one_or_none()
    if not api_key:
        raise ApiKeyNotFoundError(f"API key {key_id} not found")
    return api_key


@router.post(
    "",
    response_model=ApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new API key",
    description="Issue an API key that identifies a submitter or moderator. Admin only.",
)
async def create_new_api_key(
    request: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_admin_token),
):
    """
    Create a new API key.

    The key's `owner` becomes the caller identity recorded as `submittedBy`.
    Owners listed in `DECK_ADMIN_LOGINS` can moderate with their key.

    **Important**: The full API key is only shown once in this response.
    """
    api_key_model, full_key = await create_api_key(
        db,
        name=request.name,
        owner=request.owner,
        expires_in_days=request.expires_in_days,
    )
    await db.commit()

    return ApiKeyResponse(
        id=api_key_model.id,
        api_key=full_key,  # Only time this is shown
        key_prefix=api_key_model.key_prefix,
        name=api_key_model.name,
        owner=api_key_model.owner,
        is_admin=is_admin_login(api_key_model.owner),
        created_at=api_key_model.created_at,
        expires_at=api_key_model.expires_at,
    )


@router.get(
    "",
    response_model=list[ApiKeyInfo],
    summary="List all API keys",
    description="List all API keys (without the actual key values). Admin only.",
)
async def list_api_keys(
    include_inactive: bool = Query(False, description="Include inactive keys"),
    owner: Optional[str] = Query(None, description="Only keys issued to this owner"),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_admin_token),
):
    query = select(ApiKey)
    if not include_inactive:
        query = query.where(ApiKey.is_active == True)  # noqa: E712
    if owner:
        query = query.where(func.lower(ApiKey.owner) == owner.strip().lower())

    result = await db.execute(query.order_by(ApiKey.created_at.desc()))
    return [ApiKeyInfo.model_validate(key) for key in result.scalars().all()]


@router.get(
    "/{key_id}",
    response_model=ApiKeyInfo,
    summary="Get API key details",
    description="Get details of a specific API key. Admin only.",
)
async def get_api_key(
    key_id: str,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_admin_token),
):
    return ApiKeyInfo.model_validate(await _get_key_or_404(db, key_id))


@router.delete(
    "/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key",
    description="Deactivate an API key (soft delete). Admin only.",
)
async def revoke_api_key(
    key_id: str,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_admin_token),
):
    """Revoke/deactivate an API key."""
    api_key = await _get_key_or_404(db, key_id)
    api_key.is_active = False
    await db.commit()
