"""Product and stock-movement models."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from upkeep.core.enums import StockMovementReason
from upkeep.models.base import AuditMixin, Base, TenantScopedMixin, enum_type


class Product(Base, AuditMixin, TenantScopedMixin):
    __tablename__ = "products"
    __table_args__ = (Index("idx_products_tenant_sku", "tenant_id", "sku"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(120))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_spare_part: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class StockMovement(Base, AuditMixin, TenantScopedMixin):
    """Append-only record of every stock change made by the maintenance core."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        Index("idx_stock_movements_tenant_product", "tenant_id", "product_id"),
        Index("idx_stock_movements_visit", "visit_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[StockMovementReason] = mapped_column(enum_type(StockMovementReason), nullable=False)
    visit_id: Mapped[int | None] = mapped_column(ForeignKey("maintenance_visits.id", ondelete="SET NULL"))
    visit_item_id: Mapped[int | None] = mapped_column(Integer)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    note: Mapped[str | None] = mapped_column(Text)

    product = relationship("Product")
