from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from .database import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)  # verified token subject
    created_at = Column(DateTime(timezone=True), nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": self.created_at,
        }


class OrderItem(Base):
    """One line per (order, item); duplicate lines are summed before insert"""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )

    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="RESTRICT"), primary_key=True, index=True)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
    item = relationship("Item")

    @property
    def to_schema(self):
        return {
            "order_id": self.order_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
        }
