from sqlalchemy import CheckConstraint, Column, Index, Integer, Numeric, String, Text, func
from .database import Base


class Item(Base):
    """Catalog item; stock is only ever decremented by order placement"""
    __tablename__ = "items"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_items_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_items_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    image_url = Column(String, nullable=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "stock": self.stock,
            "image_url": self.image_url,
        }


# Case-insensitive uniqueness backs the pre-insert name scan
Index("ux_items_name_lower", func.lower(Item.name), unique=True)
