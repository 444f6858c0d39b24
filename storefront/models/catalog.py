"""
Storefront Inventory - Catalog models

[CONFIG DATA]        products, locations - owned by the catalog admin
[TRANSACTIONAL DATA] products.stock, location_stock.quantity - mutated only
                     through the conditional updates in storefront.db.stock_ops
"""
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, Boolean, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storefront.core.timeutil import utcnow
from storefront.db.database import Base


class Product(Base):
    """
    stock is the number of units available right now. Cart holds and
    placed orders have already been subtracted from it.
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("quota_limit >= 0", name="ck_products_quota_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False)  # minor units (satang / cents)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reservation_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    quota_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0 = unlimited
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Product {self.id} stock={self.stock}>"


class Location(Base):
    """[CONFIG DATA] - a warehouse, store or virtual bin holding stock."""
    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="warehouse")
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class LocationStock(Base):
    """
    Secondary per-location counter. Moves in lockstep with Product.stock
    when an admin adjusts a location; never goes below zero.
    """
    __tablename__ = "location_stock"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_location_stock_product_location"),
        CheckConstraint("quantity >= 0", name="ck_location_stock_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), index=True, nullable=False)
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), index=True, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
