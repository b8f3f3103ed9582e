import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Conflict, InsufficientStock, InvalidRequest, NotFound, StorageError, StorefrontError
from db.image import Image
from db.item import Item
from db.order import Order, OrderItem

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _unit_of_work(db: AsyncSession, operation: str, **context):
    """Commit on success; roll back on any failure, cancellation included.

    `current_user` never touches the session, but handlers may have read through
    it already (autobegin), so we ride the session's transaction instead of
    calling `db.begin()`.
    """
    try:
        yield
        await db.commit()
    except StorefrontError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("[store] %s failed %s: %r", operation, context, e)
        raise StorageError(f"Failed to {operation}") from e
    except BaseException:
        await db.rollback()
        logger.warning("[store] %s aborted %s", operation, context)
        raise


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

async def list_items(db: AsyncSession) -> List[Item]:
    result = await db.execute(select(Item).order_by(Item.id))
    return list(result.scalars().all())


async def get_item(db: AsyncSession, item_id: int) -> Item:
    result = await db.execute(select(Item).where(Item.id == item_id))
    item = result.scalar_one_or_none()
    if not item:
        raise NotFound(f"Item {item_id} not found")
    return item


async def missing_item_ids(db: AsyncSession, item_ids: Iterable[int]) -> List[int]:
    """Ids from `item_ids` that have no row, sorted."""
    wanted = set(item_ids)
    if not wanted:
        return []
    result = await db.execute(select(Item.id).where(Item.id.in_(wanted)))
    return sorted(wanted - set(result.scalars().all()))


async def add_item(
    db: AsyncSession,
    name: str,
    description: str,
    price: Decimal,
    stock: int,
    image: Optional[Tuple[bytes, str]] = None,
) -> int:
    """Insert an item, refusing a name that already exists in any casing.

    `image` is an optional `(data, content_type)` pair stored alongside the item.
    """
    async with _unit_of_work(db, "add item", name=name):
        existing = await db.execute(select(Item.name))
        folded = name.casefold()
        if any(other.casefold() == folded for other in existing.scalars().all()):
            raise Conflict(f"Item named {name!r} already exists")

        item = Item(name=name, description=description, price=price, stock=stock)
        if image is not None:
            data, content_type = image
            img = Image(id=uuid.uuid4(), data=data, content_type=content_type)
            db.add(img)
            item.image_url = img.url
        db.add(item)
        try:
            await db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent add of the same name
            raise Conflict(f"Item named {name!r} already exists") from e
        item_id = item.id

    logger.info("[store] added item %s (%s) stock=%s", item_id, name, stock)
    return item_id


async def update_item(
    db: AsyncSession,
    item_id: int,
    *,
    stock: Optional[int] = None,
    price: Optional[Decimal] = None,
) -> Item:
    """Overwrite the given fields of an item. Values are absolute, not deltas."""
    if stock is not None and stock < 0:
        raise InvalidRequest("stock must be >= 0")
    if price is not None and price < 0:
        raise InvalidRequest("price must be >= 0")

    async with _unit_of_work(db, "update item", item_id=item_id):
        result = await db.execute(select(Item).where(Item.id == item_id))
        item = result.scalar_one_or_none()
        if not item:
            raise NotFound(f"No item with id {item_id}")
        if stock is not None:
            item.stock = stock
        if price is not None:
            item.price = price
    return item


async def update_item_stock(db: AsyncSession, item_id: int, new_stock: int) -> None:
    await update_item(db, item_id, stock=new_stock)


async def delete_item(db: AsyncSession, item_id: int) -> None:
    async with _unit_of_work(db, "delete item", item_id=item_id):
        try:
            res = await db.execute(delete(Item).where(Item.id == item_id))
        except IntegrityError as e:
            raise Conflict(f"Item {item_id} is referenced by existing orders") from e
        if res.rowcount == 0:
            raise NotFound(f"No item with id {item_id}")


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

async def list_orders_for_user(db: AsyncSession, user_id: str) -> List[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(result.scalars().all())


async def list_orders(db: AsyncSession) -> List[Order]:
    result = await db.execute(select(Order).order_by(Order.created_at.desc(), Order.id.desc()))
    return list(result.scalars().all())


async def get_order(db: AsyncSession, order_id: int) -> Tuple[Order, List[OrderItem]]:
    """Order header and its lines. Ownership is checked by the caller."""
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if not order:
        raise NotFound(f"Order {order_id} not found")
    lines = await db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.item_id)
    )
    return order, list(lines.scalars().all())


async def _reserve_line(db: AsyncSession, order_id: int, item_id: int, quantity: int) -> None:
    """Insert one order line and take its quantity out of stock."""
    locked = await db.execute(select(Item.stock).where(Item.id == item_id).with_for_update())
    available = locked.scalar_one_or_none()
    if available is None:
        raise NotFound(f"Item {item_id} not found")
    if available < quantity:
        raise InsufficientStock(item_id, quantity, available)

    db.add(OrderItem(order_id=order_id, item_id=item_id, quantity=quantity))
    await db.flush()

    res = await db.execute(
        update(Item)
        .where(Item.id == item_id, Item.stock >= quantity)
        .values(stock=Item.stock - quantity)
    )
    if res.rowcount != 1:
        raise InsufficientStock(item_id, quantity)


async def place_order(db: AsyncSession, user_id: str, lines: Dict[int, int]) -> int:
    """Create an order for `user_id` and decrement stock, all or nothing.

    `lines` maps item id to quantity and must already be coalesced. Item rows
    are locked in ascending id order. Raises `InsufficientStock` when an item
    cannot cover its quantity, `NotFound` when an item disappeared since the
    caller's existence check, and `StorageError` on any database failure; in
    every case nothing is committed.
    """
    if not lines:
        raise InvalidRequest("order must contain at least one item")
    bad = sorted(item_id for item_id, qty in lines.items() if qty <= 0)
    if bad:
        raise InvalidRequest(f"quantity must be > 0 (item {bad[0]})")

    item_ids = sorted(lines)
    async with _unit_of_work(db, "place order", user_id=user_id, item_ids=item_ids):
        order = Order(user_id=user_id, created_at=datetime.now(timezone.utc))
        db.add(order)
        await db.flush()  # Flush to get the ID

        for item_id in item_ids:
            await _reserve_line(db, order.id, item_id, lines[item_id])
        order_id = order.id

    logger.info("[store] order %s placed by %s: %s", order_id, user_id, {i: lines[i] for i in item_ids})
    return order_id


async def delete_order(db: AsyncSession, order_id: int) -> None:
    async with _unit_of_work(db, "delete order", order_id=order_id):
        # Delete children first (FK)
        await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
        res = await db.execute(delete(Order).where(Order.id == order_id))
        if res.rowcount == 0:
            raise NotFound(f"No order with id {order_id}")
