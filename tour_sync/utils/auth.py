import asyncio
import hashlib
import secrets

import bcrypt
from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tour_sync.config import settings
from tour_sync.database import get_db
from tour_sync.models.api_token import ApiToken

# sha256 digests of tokens that already passed a bcrypt check
_verified: set[str] = set()


def generate_token() -> str:
    """Create a new random API token."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """Hash an API token using bcrypt."""
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(token.encode("utf-8"), salt).decode("utf-8")


def verify_token(token: str, token_hash: str) -> bool:
    """Verify an API token against a bcrypt hash."""
    return bcrypt.checkpw(token.encode("utf-8"), token_hash.encode("utf-8"))


def _matches_any(token: str, token_hashes: list[str]) -> bool:
    return any(verify_token(token, token_hash) for token_hash in token_hashes)


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def clear_token_cache() -> None:
    _verified.clear()


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_token(
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> str:
    """Dependency that accepts a request carrying a valid bearer token."""
    if not authorization:
        raise _unauthorized()
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized()

    digest = _digest(token)
    if digest in _verified:
        return token

    result = await db.execute(select(ApiToken.token_hash).where(ApiToken.is_active.is_(True)))
    # bcrypt checks run in a worker thread
    if await asyncio.to_thread(_matches_any, token, list(result.scalars())):
        _verified.add(digest)
        return token
    raise _unauthorized()


async def seed_api_token(
    session_factory: async_sessionmaker[AsyncSession],
    token: str,
    name: str = "default",
) -> None:
    """Store ``token`` under ``name``, replacing the hash if it changed."""
    async with session_factory() as session:
        result = await session.execute(select(ApiToken).where(ApiToken.name == name))
        existing = result.scalar_one_or_none()
        if existing is None:
            session.add(ApiToken(name=name, token_hash=hash_token(token), is_active=True))
        elif not verify_token(token, existing.token_hash):
            existing.token_hash = hash_token(token)
            existing.is_active = True
        else:
            return
        await session.commit()
    clear_token_cache()
