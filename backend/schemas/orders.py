from pydantic import BaseModel, Field
from typing import List
from datetime import datetime

from schemas.items import DB_INT_MAX


class OrderLineInput(BaseModel):
    item_id: int = Field(ge=1, le=DB_INT_MAX)
    quantity: int = Field(le=DB_INT_MAX)  # positivity is checked while coalescing


class OrderCreate(BaseModel):
    items: List[OrderLineInput]


class OrderCreated(BaseModel):
    order_id: int


class OrderRead(BaseModel):
    id: int
    user_id: str
    created_at: datetime


class OrderItemRead(BaseModel):
    order_id: int
    item_id: int
    quantity: int


class OrderDetail(BaseModel):
    order: OrderRead
    order_items: List[OrderItemRead]
