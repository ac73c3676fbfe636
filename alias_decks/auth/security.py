"""Caller identity and admin authorization."""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, Request
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alias_decks.config import get_settings
from alias_decks.db.models import ApiKey
from alias_decks.db.session import get_db
from alias_decks.exceptions import UnauthorizedError
from alias_decks.middleware.rate_limit import resolve_client_ip

# API keys are random 128-bit tokens, so a fast KDF is sufficient
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

API_KEY_PREFIX = "ask_"
API_KEY_LENGTH = 36


@dataclass
class Caller:
    """Who is making the request, as far as the service can verify."""

    identity: Optional[str] = None
    is_admin: bool = False
    client_ip: Optional[str] = None


def generate_api_key() -> tuple[str, str]:
    """
    Generate a new API key.
    Returns: (full_key, prefix)
    Format: ask_XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX (32 random chars after prefix)
    """
    random_part = secrets.token_hex(16)
    full_key = f"{API_KEY_PREFIX}{random_part}"
    prefix = full_key[:12]
    return full_key, prefix


def hash_api_key(api_key: str) -> str:
    """Hash an API key for storage."""
    return pwd_context.hash(api_key)


def verify_api_key(plain_key: str, hashed_key: str) -> bool:
    """Verify an API key against its hash."""
    return pwd_context.verify(plain_key, hashed_key)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def get_api_key_from_db(
    db: AsyncSession, key_prefix: str, full_key: str
) -> Optional[ApiKey]:
    """Look up an API key by prefix and verify the full key."""
    result = await db.execute(
        select(ApiKey).where(
            ApiKey.key_prefix == key_prefix,
            ApiKey.is_active == True,  # noqa: E712
        )
    )
    for api_key in result.scalars().all():
        if api_key.expires_at and _as_utc(api_key.expires_at) < datetime.now(timezone.utc):
            continue
        if verify_api_key(full_key, api_key.key_hash):
            return api_key
    return None


def is_admin_login(login: Optional[str]) -> bool:
    return bool(login) and login.lower() in get_settings().admin_logins


def matches_admin_token(candidate: Optional[str]) -> bool:
    token = get_settings().deck_admin_token
    if not token or not candidate:
        return False
    return secrets.compare_digest(candidate.encode(), token.encode())


async def resolve_caller(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """
    Resolve the caller from the request headers.

    Two independent admin gates are honoured: the shared admin token
    (``Authorization: Bearer`` or ``X-Admin-Token``) and an API key whose
    owner is on the admin allowlist. Anonymous callers are allowed through.
    """
    bearer = None
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization[7:].strip()

    caller = Caller(client_ip=resolve_client_ip(request))
    if matches_admin_token(x_admin_token) or matches_admin_token(bearer):
        caller.is_admin = True

    api_key_str = bearer if bearer and bearer.startswith(API_KEY_PREFIX) else x_api_key
    if api_key_str:
        if not api_key_str.startswith(API_KEY_PREFIX) or len(api_key_str) != API_KEY_LENGTH:
            raise UnauthorizedError("Invalid API key format")
        api_key = await get_api_key_from_db(db, api_key_str[:12], api_key_str)
        if api_key is None:
            raise UnauthorizedError("Invalid or expired API key")
        caller.identity = api_key.owner.lower()
        caller.is_admin = caller.is_admin or is_admin_login(caller.identity)

    request.state.caller = caller
    return caller


async def require_admin(caller: Caller = Depends(resolve_caller)) -> Caller:
    """Dependency for admin-only operations."""
    if not caller.is_admin:
        raise UnauthorizedError()
    return caller


def verify_admin_token(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")) -> bool:
    """Verify access to key management using the shared admin token."""
    if not matches_admin_token(x_admin_token):
        raise UnauthorizedError("Invalid admin token")
    return True


async def create_api_key(
    db: AsyncSession,
    name: str,
    owner: str,
    expires_in_days: Optional[int] = None,
) -> tuple[ApiKey, str]:
    """
    Create a new API key.
    Returns: (ApiKey model, full_key_string)
    """
    full_key, prefix = generate_api_key()
    hashed = hash_api_key(full_key)

    expires_at = None
    if expires_in_days:
        expires_at = datetime.now(timezone.utc) + timedelta(days=expires_in_days)

    api_key = ApiKey(
        key_hash=hashed,
        key_prefix=prefix,
        name=name,
        owner=owner.strip(),
        expires_at=expires_at,
    )

    db.add(api_key)
    await db.flush()
    await db.refresh(api_key)

    return api_key, full_key
