from decimal import Decimal
from pydantic import BaseModel, Field, field_serializer
from typing import Optional

# Upper bound of the INTEGER columns ids, stock and quantities are stored in
DB_INT_MAX = 2**31 - 1


class ItemRead(BaseModel):
    id: int
    name: str
    description: str
    price: Decimal
    stock: int
    image_url: Optional[str] = None

    @field_serializer("price", when_used="json")
    def price_as_number(self, price: Decimal) -> float:
        # At most 10 significant digits, so the float's repr is the exact value
        return float(price)


class ItemCreate(BaseModel):
    name: str
    description: str = ""
    price: Decimal = Field(max_digits=10, decimal_places=2)  # items.price Numeric(10, 2)
    stock: int = Field(le=DB_INT_MAX)
    image_base64: Optional[str] = None  # optionally a data URL


class ItemCreated(BaseModel):
    item_id: int


class StockUpdate(BaseModel):
    item_id: int = Field(ge=1, le=DB_INT_MAX)
    stock: int = Field(le=DB_INT_MAX)
    price: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
