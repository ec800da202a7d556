"""Order models for placed, tracked and delivered customer orders."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow.db.base import Base
from orderflow.models.enums import OrderStatus, PaymentMethod, PaymentStatus
from orderflow.models.types import enum_column


class Order(Base):
    """Customer order tracked from placement through OTP-verified hand-off."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    delivery_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PLACED,
    )
    assigned_partner_id: Mapped[int | None] = mapped_column(
        ForeignKey("delivery_partners.id"), nullable=True, index=True
    )

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_charge: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(
        enum_column(PaymentMethod, "payment_method"), nullable=False, default=PaymentMethod.CASH
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    payment_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)

    otp: Mapped[str] = mapped_column(String(8), nullable=False)
    otp_failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    address_street: Mapped[str] = mapped_column(String(255), nullable=False)
    address_city: Mapped[str] = mapped_column(String(128), nullable=False)
    address_state: Mapped[str] = mapped_column(String(128), nullable=False)
    address_zip_code: Mapped[str] = mapped_column(String(16), nullable=False)
    address_landmark: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    address_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    delivery_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    current_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    feedback_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_tip: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    feedback_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    estimated_delivery_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_delivery_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivering_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )
    location_points: Mapped[list["OrderLocationPoint"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLocationPoint.id",
    )

    __table_args__ = (Index("ix_orders_status_partner", "status", "assigned_partner_id"),)

    @property
    def has_feedback(self) -> bool:
        return self.feedback_submitted_at is not None


class OrderItem(Base):
    """Snapshot of an order line item priced at placement time."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    order: Mapped[Order] = relationship(back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderLocationPoint(Base):
    """Append-only location history entry reported by the delivery partner."""

    __tablename__ = "order_location_points"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    partner_id: Mapped[int] = mapped_column(ForeignKey("delivery_partners.id"), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    order: Mapped[Order] = relationship(back_populates="location_points")
