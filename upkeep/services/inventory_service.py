"""Product stock reads and atomic stock movements."""

from __future__ import annotations

import logging

from sqlalchemy import select, update

from upkeep.core.enums import StockMovementReason
from upkeep.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from upkeep.models import Product, StockMovement
from upkeep.services.base_service import BaseService

logger = logging.getLogger(__name__)


class InventoryService(BaseService):
    """Stock store used by visit execution.

    Every change is one conditional UPDATE plus one ``stock_movements`` row.
    Nothing here commits.
    """

    def get_product(self, tenant_id: int, product_id: int) -> Product:
        product = self.db.scalar(
            select(Product).where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.deleted_at.is_(None),
            )
        )
        if product is None:
            raise NotFoundError(f"Product {product_id} not found.")
        return product

    def get_stock(self, tenant_id: int, product_id: int) -> int:
        stock = self.db.scalar(
            select(Product.stock_quantity).where(Product.id == product_id, Product.tenant_id == tenant_id)
        )
        if stock is None:
            raise NotFoundError(f"Product {product_id} not found.")
        return int(stock)

    def decrement_stock(
        self,
        tenant_id: int,
        product_id: int,
        quantity: int,
        reason: StockMovementReason = StockMovementReason.VISIT_CONSUMPTION,
        visit_id: int | None = None,
        visit_item_id: int | None = None,
        actor_id: int | None = None,
        note: str | None = None,
    ) -> StockMovement:
        """Decrement only if enough stock remains; raise InsufficientStockError otherwise."""
        if quantity < 1:
            raise ValidationError("Quantity must be a positive integer.")
        result = self.db.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.stock_quantity >= quantity,
            )
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            product = self.get_product(tenant_id, product_id)
            raise InsufficientStockError(
                product_id=product_id,
                available=self.get_stock(tenant_id, product_id),
                required=quantity,
                product_name=product.name,
            )
        return self._record_movement(
            tenant_id, product_id, -quantity, reason, visit_id, visit_item_id, actor_id, note
        )

    def increment_stock(
        self,
        tenant_id: int,
        product_id: int,
        quantity: int,
        reason: StockMovementReason = StockMovementReason.VISIT_ITEM_REVERSAL,
        visit_id: int | None = None,
        visit_item_id: int | None = None,
        actor_id: int | None = None,
        note: str | None = None,
    ) -> StockMovement:
        if quantity < 1:
            raise ValidationError("Quantity must be a positive integer.")
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.tenant_id == tenant_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Product {product_id} not found.")
        return self._record_movement(
            tenant_id, product_id, quantity, reason, visit_id, visit_item_id, actor_id, note
        )

    def _record_movement(
        self,
        tenant_id: int,
        product_id: int,
        delta: int,
        reason: StockMovementReason,
        visit_id: int | None,
        visit_item_id: int | None,
        actor_id: int | None,
        note: str | None,
    ) -> StockMovement:
        movement = StockMovement(
            tenant_id=tenant_id,
            product_id=product_id,
            quantity_delta=delta,
            reason=reason,
            visit_id=visit_id,
            visit_item_id=visit_item_id,
            actor_id=actor_id,
            note=note,
        )
        self.db.add(movement)
        self.db.flush()
        logger.info(
            "stock.moved",
            extra={
                "event": "stock.moved",
                "tenant_id": tenant_id,
                "product_id": product_id,
                "quantity_delta": delta,
                "reason": reason.value,
                "visit_id": visit_id,
            },
        )
        return movement
