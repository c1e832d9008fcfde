from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Numeric, Text, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base
from models.enums import OrderStatus


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), index=True)
    shipping_address_id: Mapped[int] = mapped_column(ForeignKey("addresses.id", ondelete="RESTRICT"), index=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, native_enum=False, length=30), default=OrderStatus.PENDING, index=True
    )
    # total_amount is the items subtotal; final_amount = total_amount + shipping_fee + taxes
    total_amount: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    shipping_fee: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    taxes: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    final_amount: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    buyer = relationship("User")
    shipping_address = relationship("Address")
    items = relationship("OrderItem", cascade="all, delete-orphan", back_populates="order")
    delivery = relationship("Delivery", uselist=False, back_populates="order")

    def seller_ids(self) -> set[int]:
        return {item.seller_id for item in self.items}
