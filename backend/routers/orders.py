import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Identity, current_admin, current_user
from core.config import settings
from core.errors import Forbidden, InvalidRequest, NotFound, StorageError
from db.database import get_async_session
from db.inventory import store
from schemas.items import DB_INT_MAX
from schemas.orders import (
    OrderCreate,
    OrderCreated,
    OrderDetail,
    OrderItemRead,
    OrderLineInput,
    OrderRead,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def coalesce_lines(lines: List[OrderLineInput]) -> Dict[int, int]:
    """Sum quantities per item id. Quantities must be positive and sums must fit an INTEGER column."""
    if not lines:
        raise InvalidRequest("order must contain at least one item")
    merged: Dict[int, int] = {}
    for line in lines:
        if line.quantity <= 0:
            raise InvalidRequest("quantity must be > 0")
        merged[line.item_id] = merged.get(line.item_id, 0) + line.quantity
        if merged[line.item_id] > DB_INT_MAX:
            raise InvalidRequest(f"quantity for item {line.item_id} is too large")
    return merged


@router.get("")
async def get_orders(
    order_id: Optional[int] = Query(None, ge=1, le=DB_INT_MAX),
    identity: Identity = Depends(current_user),
    db: AsyncSession = Depends(get_async_session),
):
    """The caller's orders, or one of them with its lines when `order_id` is given"""
    if order_id is None:
        orders = await store.list_orders_for_user(db, identity.subject)
        return [OrderRead(**o.to_schema) for o in orders]

    order, lines = await store.get_order(db, order_id)
    if order.user_id != identity.subject:
        raise Forbidden("You are not allowed to view this order")
    return OrderDetail(
        order=OrderRead(**order.to_schema),
        order_items=[OrderItemRead(**line.to_schema) for line in lines],
    )


@router.get("/all", response_model=List[OrderRead])
async def list_all_orders(
    admin: Identity = Depends(current_admin),
    db: AsyncSession = Depends(get_async_session),
):
    orders = await store.list_orders(db)
    return [OrderRead(**o.to_schema) for o in orders]


@router.post("", response_model=OrderCreated, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: OrderCreate,
    identity: Identity = Depends(current_user),
    db: AsyncSession = Depends(get_async_session),
):
    lines = coalesce_lines(payload.items)

    missing = await store.missing_item_ids(db, lines)
    if missing:
        raise NotFound(f"item {missing[0]} not found")

    try:
        order_id = await asyncio.wait_for(
            store.place_order(db, identity.subject, lines),
            timeout=settings.order_timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.error("[orders] placement for %s timed out after %ss", identity.subject, settings.order_timeout_seconds)
        raise StorageError("order placement timed out") from e
    return OrderCreated(order_id=order_id)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order(
    order_id: int = Query(..., ge=1, le=DB_INT_MAX),
    identity: Identity = Depends(current_user),
    db: AsyncSession = Depends(get_async_session),
):
    order, _ = await store.get_order(db, order_id)
    if order.user_id != identity.subject:
        raise Forbidden("You are not allowed to delete this order")
    await store.delete_order(db, order_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
