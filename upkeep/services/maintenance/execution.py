"""Visit execution: start, complete, parts consumption and status changes."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select

from upkeep.auth.access_scope import AccessScope
from upkeep.core.enums import ContractStatus, StockMovementReason, VisitStatus
from upkeep.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from upkeep.models import MaintenanceContract, MaintenanceVisit, MaintenanceVisitItem, Product
from upkeep.services.inventory_service import InventoryService
from upkeep.services.maintenance.base import MaintenanceService
from upkeep.workflow.state_machine import COMPLETION_RESULTS

logger = logging.getLogger(__name__)

CompletionListener = Callable[[MaintenanceVisit], None]


@dataclass(frozen=True)
class PartUsage:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None
    notes: str | None = None


@dataclass
class VisitCompletion:
    result: VisitStatus = VisitStatus.COMPLETED
    completion_notes: str | None = None
    customer_feedback: str | None = None
    customer_rating: int | None = None
    photos: list[str] | None = None
    parts: list[PartUsage] = field(default_factory=list)


@dataclass
class CompletionOutcome:
    visit: MaintenanceVisit
    next_visit: MaintenanceVisit | None = None


class VisitExecutionService(MaintenanceService):
    """Drives one visit at a time through its lifecycle."""

    def __init__(self, *args, inventory: InventoryService | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.inventory = inventory or InventoryService(self.db, config=self.config)
        self._completion_listeners: list[CompletionListener] = []

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Register a callback run after a completion has committed."""
        self._completion_listeners.append(listener)

    def start_visit(
        self,
        scope: AccessScope,
        visit_id: int,
        technician_id: int,
        actor_id: int | None = None,
    ) -> MaintenanceVisit:
        with self.transaction():
            visit = self.find_visit(scope, visit_id, for_update=True)
            self.state_machine.assert_transition(visit.status, VisitStatus.IN_PROGRESS)
            self.resolver.assert_technician_for_branch(technician_id, visit.tenant_id, visit.branch_id)

            self.transition(visit, VisitStatus.IN_PROGRESS, actor_id=actor_id or technician_id)
            visit.assigned_technician_id = technician_id
            visit.started_by = actor_id or technician_id
            self.db.flush()

        logger.info(
            "visit.started",
            extra={
                "event": "visit.started",
                "tenant_id": visit.tenant_id,
                "visit_id": visit.id,
                "technician_id": technician_id,
                "started_at": visit.actual_start_time,
            },
        )
        return visit

    def complete_visit(
        self,
        scope: AccessScope,
        visit_id: int,
        completion: VisitCompletion,
        actor_id: int | None = None,
    ) -> CompletionOutcome:
        """Finish an in-progress visit.

        Parts, stock, status and the follow-up visit commit together; a stock
        shortfall leaves every one of them untouched.
        """
        result = VisitStatus(completion.result)
        if result not in COMPLETION_RESULTS:
            raise ValidationError(f"Completion result must be one of: {', '.join(sorted(s.value for s in COMPLETION_RESULTS))}")
        if completion.customer_rating is not None and not 1 <= completion.customer_rating <= 5:
            raise ValidationError("customer_rating must be between 1 and 5.")

        with self.transaction():
            visit = self.find_visit(scope, visit_id, for_update=True)
            self.state_machine.assert_transition(visit.status, result)

            self._consume_parts(visit, completion.parts, actor_id=actor_id)
            visit.total_cost = visit.calculate_total_cost()
            self.transition(visit, result, actor_id=actor_id)
            visit.completed_by = actor_id
            visit.completion_notes = completion.completion_notes
            visit.customer_feedback = completion.customer_feedback
            visit.customer_rating = completion.customer_rating
            if completion.photos is not None:
                visit.photos = list(completion.photos)
            self.db.flush()

            next_visit = self._schedule_next_visit(visit, actor_id=actor_id)

        logger.info(
            "visit.completed",
            extra={
                "event": "visit.completed",
                "tenant_id": visit.tenant_id,
                "visit_id": visit.id,
                "result": result.value,
                "parts_used": len(completion.parts),
                "total_cost": visit.total_cost,
                "next_visit_id": next_visit.id if next_visit else None,
            },
        )
        self._notify_completion(visit)
        return CompletionOutcome(visit=visit, next_visit=next_visit)

    def record_parts_used(
        self,
        scope: AccessScope,
        visit_id: int,
        parts: Sequence[PartUsage],
        actor_id: int | None = None,
    ) -> list[MaintenanceVisitItem]:
        """Append consumed parts to an in-progress visit.

        Each call appends; there is no de-duplication key, so a retried call
        consumes stock twice.
        """
        with self.transaction():
            visit = self.find_visit(scope, visit_id, for_update=True)
            if VisitStatus(visit.status) is not VisitStatus.IN_PROGRESS:
                raise ValidationError("Parts can only be recorded on an in-progress visit.")
            items = self._consume_parts(visit, parts, actor_id=actor_id)
            visit.total_cost = visit.calculate_total_cost()
            self.db.flush()
        return items

    def _consume_parts(
        self,
        visit: MaintenanceVisit,
        parts: Sequence[PartUsage],
        actor_id: int | None = None,
    ) -> list[MaintenanceVisitItem]:
        if not parts:
            return []
        required: dict[int, int] = {}
        for part in parts:
            if int(part.quantity) < 1:
                raise ValidationError(f"Quantity for product {part.product_id} must be at least 1.")
            if part.unit_price is not None and Decimal(part.unit_price) < 0:
                raise ValidationError(f"Unit price for product {part.product_id} cannot be negative.")
            required[part.product_id] = required.get(part.product_id, 0) + int(part.quantity)

        products = {
            product.id: product
            for product in self.db.scalars(
                select(Product)
                .where(
                    Product.id.in_(sorted(required)),
                    Product.tenant_id == visit.tenant_id,
                    Product.deleted_at.is_(None),
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        }
        # Check every part before touching any stock.
        for product_id, quantity in required.items():
            product = products.get(product_id)
            if product is None:
                raise ValidationError(f"Product {product_id} does not exist in this tenant.")
            if product.stock_quantity < quantity:
                raise InsufficientStockError(
                    product_id=product_id,
                    available=product.stock_quantity,
                    required=quantity,
                    product_name=product.name,
                )

        items: list[MaintenanceVisitItem] = []
        for part in parts:
            product = products[part.product_id]
            unit_cost = Decimal(part.unit_price) if part.unit_price is not None else Decimal(product.price)
            item = MaintenanceVisitItem(
                tenant_id=visit.tenant_id,
                product_id=part.product_id,
                quantity=int(part.quantity),
                unit_cost=unit_cost,
                total_cost=unit_cost * int(part.quantity),
                notes=part.notes,
            )
            visit.items.append(item)
            self.db.flush()
            self.inventory.decrement_stock(
                visit.tenant_id,
                part.product_id,
                int(part.quantity),
                reason=StockMovementReason.VISIT_CONSUMPTION,
                visit_id=visit.id,
                visit_item_id=item.id,
                actor_id=actor_id,
            )
            items.append(item)
        return items

    def remove_visit_item(
        self,
        scope: AccessScope,
        visit_id: int,
        item_id: int,
        actor_id: int | None = None,
    ) -> MaintenanceVisit:
        """Delete a consumed part and return its stock through a compensating movement."""
        with self.transaction():
            visit = self.find_visit(scope, visit_id, for_update=True)
            if self.state_machine.is_terminal(visit.status):
                raise ValidationError(f"Visit {visit_id} is {VisitStatus(visit.status).value} and read-only.")
            item = next((candidate for candidate in visit.items if candidate.id == item_id), None)
            if item is None:
                raise NotFoundError(f"Visit item {item_id} not found.")

            self.inventory.increment_stock(
                visit.tenant_id,
                item.product_id,
                item.quantity,
                reason=StockMovementReason.VISIT_ITEM_REVERSAL,
                visit_id=visit.id,
                visit_item_id=item.id,
                actor_id=actor_id,
            )
            self.db.delete(item)
            self.db.flush()
            self.db.expire(visit, ["items"])
            visit.total_cost = visit.calculate_total_cost()
            self.db.flush()
        return visit

    def update_visit_status(
        self,
        scope: AccessScope,
        visit_id: int,
        status: VisitStatus | str,
        actor_id: int | None = None,
        note: str | None = None,
    ) -> MaintenanceVisit:
        target = VisitStatus(status)
        with self.transaction():
            visit = self.find_visit(scope, visit_id, for_update=True)
            previous = VisitStatus(visit.status)
            self.transition(visit, target, actor_id=actor_id, note=note)
            self.db.flush()

        logger.info(
            "visit.status_updated",
            extra={
                "event": "visit.status_updated",
                "tenant_id": visit.tenant_id,
                "visit_id": visit.id,
                "old_status": previous.value,
                "new_status": target.value,
            },
        )
        return visit

    def _schedule_next_visit(self, visit: MaintenanceVisit, actor_id: int | None = None) -> MaintenanceVisit | None:
        contract = self.db.scalar(
            select(MaintenanceContract).where(
                MaintenanceContract.id == visit.maintenance_contract_id,
                MaintenanceContract.deleted_at.is_(None),
            )
        )
        if contract is None or contract.status != ContractStatus.ACTIVE:
            return None

        # A moved visit still counts from its original slot.
        anchor = visit.rescheduled_from or visit.scheduled_date
        next_date = contract.calculate_next_visit_date(anchor)
        if next_date is None:
            return None
        if contract.end_date is not None and next_date > contract.end_date:
            return None
        if next_date in self.occupied_dates(contract.id):
            return None

        next_visit = MaintenanceVisit.for_contract(
            contract,
            scheduled_date=next_date,
            priority=visit.priority,
            status=VisitStatus.SCHEDULED,
            assigned_technician_id=contract.assigned_technician_id,
            work_description=contract.special_instructions,
        )
        self.db.add(next_visit)
        self.db.flush()
        self.record_history(next_visit, None, VisitStatus.SCHEDULED, actor_id=actor_id, note=f"follows visit {visit.id}")
        self.db.flush()
        logger.info(
            "visit.next_scheduled",
            extra={
                "event": "visit.next_scheduled",
                "tenant_id": contract.tenant_id,
                "contract_id": contract.id,
                "completed_visit_id": visit.id,
                "next_visit_date": next_date,
            },
        )
        return next_visit

    def _notify_completion(self, visit: MaintenanceVisit) -> None:
        for listener in self._completion_listeners:
            try:
                listener(visit)
            except Exception:
                logger.exception(
                    "visit.completion_listener_failed",
                    extra={"event": "visit.completion_listener_failed", "visit_id": visit.id},
                )
