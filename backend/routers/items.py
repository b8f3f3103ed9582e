from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from core.auth import Identity, current_admin
from core.errors import InvalidRequest
from db.database import get_async_session
from db.inventory import store
from routers.images import check_image, decode_base64_image
from schemas.items import DB_INT_MAX, ItemCreate, ItemCreated, ItemRead, StockUpdate

router = APIRouter()

ITEM_FORM_FIELDS = ("name", "description", "price", "stock")


def _validation_message(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ())) or "body"
    return f"{loc}: {err.get('msg', 'invalid value')}"


def _parse_item(data: Any) -> ItemCreate:
    try:
        payload = ItemCreate.model_validate(data)
    except ValidationError as e:
        raise InvalidRequest(_validation_message(e)) from e

    payload.name = payload.name.strip()
    if not payload.name:
        raise InvalidRequest("name is required")
    if payload.price < Decimal("0"):
        raise InvalidRequest("price must be >= 0")
    if payload.stock < 0:
        raise InvalidRequest("stock must be >= 0")
    return payload


@router.get("")
async def get_items(
    item_id: Optional[int] = Query(None, ge=1, le=DB_INT_MAX),
    db: AsyncSession = Depends(get_async_session),
):
    """All items, or one item when `item_id` is given"""
    if item_id is not None:
        item = await store.get_item(db, item_id)
        return ItemRead(**item.to_schema)
    items = await store.list_items(db)
    return [ItemRead(**item.to_schema) for item in items]


@router.post("/add", response_model=ItemCreated, status_code=status.HTTP_201_CREATED)
async def add_item(
    request: Request,
    admin: Identity = Depends(current_admin),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Create an item.

    Accepts multipart/form-data (`name`, `description`, `price`, `stock` and an
    optional `image` file) or a JSON body with the same fields and an optional
    `image_base64`.
    """
    image = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        fields: Dict[str, Any] = {
            key: form.get(key) for key in ITEM_FORM_FIELDS if form.get(key) not in (None, "")
        }
        payload = _parse_item(fields)
        upload = form.get("image")
        if isinstance(upload, UploadFile) and upload.filename:
            data = await upload.read()
            image = (data, check_image(data, upload.filename, upload.content_type))
    else:
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidRequest("invalid JSON") from e
        payload = _parse_item(body)
        if payload.image_base64:
            image = decode_base64_image(payload.image_base64)

    item_id = await store.add_item(
        db,
        name=payload.name,
        description=payload.description,
        price=payload.price,
        stock=payload.stock,
        image=image,
    )
    return ItemCreated(item_id=item_id)


@router.post("/update", response_model=List[ItemRead])
async def update_item_stock(
    payload: StockUpdate,
    admin: Identity = Depends(current_admin),
    db: AsyncSession = Depends(get_async_session),
):
    """Overwrite an item's stock (and price, when sent); returns the full catalog"""
    await store.update_item(db, payload.item_id, stock=payload.stock, price=payload.price)
    items = await store.list_items(db)
    return [ItemRead(**item.to_schema) for item in items]


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    item_id: int = Query(..., ge=1, le=DB_INT_MAX),
    admin: Identity = Depends(current_admin),
    db: AsyncSession = Depends(get_async_session),
):
    await store.delete_item(db, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
