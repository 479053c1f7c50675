"""Reservation cleanup - legacy product ids left behind by old sheet rows."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tour_sync.config import settings
from tour_sync.database import get_db
from tour_sync.models.booking import Reservation
from tour_sync.schemas.common import ApiResponse
from tour_sync.schemas.sync import CleanupStatus
from tour_sync.utils.auth import require_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync/reservation-cleanup", tags=["sync"])


async def _pending_by_product(db: AsyncSession) -> dict[str, int]:
    aliases = list(settings.CLEANUP_PRODUCT_ALIASES)
    if not aliases:
        return {}
    result = await db.execute(
        select(Reservation.product_id, func.count())
        .where(Reservation.product_id.in_(aliases))
        .group_by(Reservation.product_id)
    )
    return {product_id: count for product_id, count in result.all()}


def _status(by_product: dict[str, int]) -> CleanupStatus:
    pending = sum(by_product.values())
    return CleanupStatus(needs_cleanup=pending > 0, pending=pending, by_product=by_product)


@router.get("")
async def cleanup_status(db: AsyncSession = Depends(get_db)) -> ApiResponse[CleanupStatus]:
    """How many reservations still point at a legacy product id."""
    return ApiResponse.ok(_status(await _pending_by_product(db)))


@router.post("", dependencies=[Depends(require_token)])
async def apply_cleanup(db: AsyncSession = Depends(get_db)) -> ApiResponse[CleanupStatus]:
    """Rewrite legacy product ids to their canonical ids."""
    fixed = 0
    for legacy, canonical in settings.CLEANUP_PRODUCT_ALIASES.items():
        result = await db.execute(
            update(Reservation)
            .where(Reservation.product_id == legacy)
            .values(product_id=canonical)
        )
        if result.rowcount:
            logger.info("Cleanup %s -> %s: %d reservations", legacy, canonical, result.rowcount)
            fixed += result.rowcount
    await db.flush()
    remaining = await _pending_by_product(db)
    return ApiResponse.ok(_status(remaining), message=f"{fixed} reservations updated", count=fixed)
