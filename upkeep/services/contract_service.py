"""Contract service for maintenance contract workflow operations."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select

from upkeep.auth.access_scope import AccessScope
from upkeep.core.enums import ContractFrequency, ContractStatus, UserRole, VisitStatus
from upkeep.core.exceptions import InvalidStateTransitionError, UpkeepException, ValidationError
from upkeep.models import MaintenanceContract, MaintenanceContractItem, MaintenanceVisit, Product, User
from upkeep.models.base import utcnow
from upkeep.services.maintenance.analytics import health_bucket
from upkeep.services.maintenance.base import MaintenanceService
from upkeep.services.maintenance.scheduling import VisitSchedulingService
from upkeep.utils.recurrence import iter_occurrences, validate_schedule

logger = logging.getLogger(__name__)

CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.ACTIVE: frozenset({ContractStatus.PAUSED, ContractStatus.COMPLETED, ContractStatus.CANCELLED}),
    ContractStatus.PAUSED: frozenset({ContractStatus.ACTIVE, ContractStatus.COMPLETED, ContractStatus.CANCELLED}),
    ContractStatus.COMPLETED: frozenset(),
    ContractStatus.CANCELLED: frozenset(),
}
CLOSING_STATUSES = frozenset({ContractStatus.COMPLETED, ContractStatus.CANCELLED})

UPDATABLE_FIELDS = frozenset(
    {
        "sale_id",
        "product_id",
        "customer_id",
        "customer_name",
        "customer_phone",
        "customer_email",
        "customer_address",
        "assigned_technician_id",
        "frequency",
        "frequency_value",
        "frequency_unit",
        "start_date",
        "end_date",
        "contract_value",
        "priority",
        "is_premium",
        "special_instructions",
    }
)
IMMUTABLE_FIELDS = frozenset({"id", "tenant_id", "branch_id"})
SCHEDULE_FIELDS = ("frequency", "frequency_value", "frequency_unit", "start_date", "end_date")
PARTY_FIELDS = (
    "product_id",
    "customer_id",
    "customer_name",
    "customer_phone",
    "customer_email",
    "customer_address",
    "assigned_technician_id",
    "priority",
    "is_premium",
)


class ContractService(MaintenanceService):
    """Service for maintenance contract CRUD, status changes, renewal and expiry."""

    def __init__(self, *args, scheduling: VisitSchedulingService | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.scheduling = scheduling or VisitSchedulingService(
            self.db, config=self.config, resolver=self.resolver, clock=self._clock
        )

    def create_contract(
        self,
        scope: AccessScope,
        data: dict[str, Any],
        actor_id: int | None = None,
        generate_visits: bool = False,
    ) -> MaintenanceContract:
        unknown = set(data) - UPDATABLE_FIELDS - {"branch_id", "items"}
        if unknown:
            raise ValidationError(f"Unknown contract fields: {', '.join(sorted(unknown))}")
        branch_id = data.get("branch_id")
        if branch_id is None:
            raise ValidationError("branch_id is required.")
        if not data.get("customer_name"):
            raise ValidationError("customer_name is required.")

        with self.transaction():
            self.resolver.assert_branch_access(scope, branch_id)
            fields = {key: value for key, value in data.items() if key in UPDATABLE_FIELDS}
            self._validate_fields(scope.tenant_id, fields)
            contract = MaintenanceContract(
                tenant_id=scope.tenant_id,
                branch_id=branch_id,
                status=ContractStatus.ACTIVE,
                **fields,
            )
            self.db.add(contract)
            self.db.flush()
            self._replace_items(contract, data.get("items") or [])
            if generate_visits:
                self.scheduling.generate_for_contract(contract, actor_id=actor_id)

        logger.info(
            "contract.created",
            extra={
                "event": "contract.created",
                "tenant_id": contract.tenant_id,
                "branch_id": contract.branch_id,
                "contract_id": contract.id,
                "frequency": ContractFrequency(contract.frequency).value,
            },
        )
        return contract

    def _validate_fields(self, tenant_id: int, fields: dict[str, Any], current: MaintenanceContract | None = None) -> None:
        def merged(key: str) -> Any:
            if key in fields:
                return fields[key]
            return getattr(current, key, None) if current is not None else None

        validate_schedule(*(merged(key) for key in SCHEDULE_FIELDS))
        value = fields.get("contract_value")
        if value is not None and Decimal(value) < 0:
            raise ValidationError("contract_value cannot be negative.")
        if fields.get("product_id") is not None:
            self._require_product(tenant_id, fields["product_id"])
        technician_id = fields.get("assigned_technician_id")
        if technician_id is not None:
            role = self.db.scalar(select(User.role).where(User.id == technician_id, User.tenant_id == tenant_id))
            if role is None or UserRole(role) is not UserRole.TECHNICIAN:
                raise ValidationError(f"User {technician_id} is not a technician in this tenant.")

    def _require_product(self, tenant_id: int, product_id: int) -> None:
        found = self.db.scalar(
            select(Product.id).where(Product.id == product_id, Product.tenant_id == tenant_id, Product.deleted_at.is_(None))
        )
        if found is None:
            raise ValidationError(f"Product {product_id} does not exist in this tenant.")

    def _replace_items(self, contract: MaintenanceContract, items: Iterable[dict[str, Any]]) -> None:
        contract.items.clear()
        for position, item in enumerate(items):
            quantity = Decimal(item.get("quantity", 1))
            unit_cost = Decimal(item.get("unit_cost", 0))
            if quantity <= 0:
                raise ValidationError("Contract item quantity must be positive.")
            if unit_cost < 0:
                raise ValidationError("Contract item unit_cost cannot be negative.")
            self._require_product(contract.tenant_id, item["product_id"])
            contract.items.append(
                MaintenanceContractItem(
                    tenant_id=contract.tenant_id,
                    product_id=item["product_id"],
                    position=position,
                    quantity=quantity,
                    unit_cost=unit_cost,
                    is_included=item.get("is_included", True),
                )
            )
        self.db.flush()

    def get_contract(self, scope: AccessScope, contract_id: int) -> MaintenanceContract:
        return self.find_contract(scope, contract_id)

    def list_contracts(
        self,
        scope: AccessScope,
        status: ContractStatus | None = None,
        branch_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[MaintenanceContract]:
        stmt = self.scoped_contracts(scope)
        if status is not None:
            stmt = stmt.where(MaintenanceContract.status == status)
        if branch_id is not None:
            stmt = stmt.where(MaintenanceContract.branch_id == branch_id)
        stmt = stmt.order_by(MaintenanceContract.id).limit(limit).offset(offset)
        return list(self.db.scalars(stmt))

    def update_contract(self, scope: AccessScope, contract_id: int, changes: dict[str, Any]) -> MaintenanceContract:
        locked = IMMUTABLE_FIELDS & set(changes)
        if locked:
            raise ValidationError(f"Fields cannot change after creation: {', '.join(sorted(locked))}")
        if "status" in changes:
            raise ValidationError("Use the status endpoint to change contract status.")
        unknown = set(changes) - UPDATABLE_FIELDS - {"items"}
        if unknown:
            raise ValidationError(f"Unknown contract fields: {', '.join(sorted(unknown))}")

        with self.transaction():
            contract = self.find_contract(scope, contract_id, for_update=True)
            if ContractStatus(contract.status) in CLOSING_STATUSES:
                raise ValidationError(f"Contract {contract_id} is {contract.status.value} and read-only.")
            fields = {key: value for key, value in changes.items() if key in UPDATABLE_FIELDS}
            self._validate_fields(contract.tenant_id, fields, current=contract)
            for key, value in fields.items():
                setattr(contract, key, value)
            if "items" in changes:
                self._replace_items(contract, changes["items"] or [])
            self.db.flush()

        logger.info(
            "contract.updated",
            extra={"event": "contract.updated", "tenant_id": contract.tenant_id, "contract_id": contract.id, "fields": sorted(changes)},
        )
        return contract

    def change_status(
        self,
        scope: AccessScope,
        contract_id: int,
        status: ContractStatus | str,
        actor_id: int | None = None,
    ) -> tuple[MaintenanceContract, int]:
        """Move a contract between statuses; closing it cancels its future visits."""
        target = ContractStatus(status)
        with self.transaction():
            contract = self.find_contract(scope, contract_id, for_update=True)
            current = ContractStatus(contract.status)
            if target not in CONTRACT_TRANSITIONS[current]:
                raise InvalidStateTransitionError(current.value, target.value)
            contract.status = target
            cancelled = 0
            if target in CLOSING_STATUSES:
                cancelled = self.scheduling.cancel_future_for_contract(
                    contract, actor_id=actor_id, note=f"contract {target.value}"
                )
            self.db.flush()

        logger.info(
            "contract.status_changed",
            extra={
                "event": "contract.status_changed",
                "tenant_id": contract.tenant_id,
                "contract_id": contract.id,
                "old_status": current.value,
                "new_status": target.value,
                "cancelled_visits": cancelled,
            },
        )
        return contract, cancelled

    def renew_contract(
        self,
        scope: AccessScope,
        contract_id: int,
        data: dict[str, Any],
        actor_id: int | None = None,
        generate_visits: bool = False,
    ) -> MaintenanceContract:
        """Create the follow-up contract and close the source one."""
        if data.get("start_date") is None:
            raise ValidationError("start_date is required for renewal.")

        with self.transaction():
            source = self.find_contract(scope, contract_id, for_update=True)
            if ContractStatus(source.status) is ContractStatus.CANCELLED:
                raise InvalidStateTransitionError(source.status.value, ContractStatus.ACTIVE.value, "Cancelled contracts cannot be renewed.")

            fields = {key: getattr(source, key) for key in PARTY_FIELDS}
            for key in ("frequency", "frequency_value", "frequency_unit", "contract_value", "special_instructions"):
                fields[key] = data[key] if data.get(key) is not None else getattr(source, key)
            fields["start_date"] = data["start_date"]
            fields["end_date"] = data.get("end_date")
            validate_schedule(*(fields[key] for key in SCHEDULE_FIELDS))

            renewal = MaintenanceContract(
                tenant_id=source.tenant_id,
                branch_id=source.branch_id,
                sale_id=source.sale_id,
                status=ContractStatus.ACTIVE,
                renewed_from_id=source.id,
                **fields,
            )
            self.db.add(renewal)
            self.db.flush()
            self._replace_items(
                renewal,
                [
                    {
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "unit_cost": item.unit_cost,
                        "is_included": item.is_included,
                    }
                    for item in source.items
                ],
            )
            if ContractStatus(source.status) is not ContractStatus.COMPLETED:
                source.status = ContractStatus.COMPLETED
                self.scheduling.cancel_future_for_contract(source, actor_id=actor_id, note="contract renewed")
            if generate_visits:
                self.scheduling.generate_for_contract(renewal, actor_id=actor_id)
            self.db.flush()

        logger.info(
            "contract.renewed",
            extra={
                "event": "contract.renewed",
                "tenant_id": renewal.tenant_id,
                "original_contract_id": source.id,
                "contract_id": renewal.id,
            },
        )
        return renewal

    def handle_contract_expiration(self, scope: AccessScope, contract_id: int) -> dict[str, Any]:
        with self.transaction():
            contract = self.find_contract(scope, contract_id, for_update=True)
            if not contract.is_expired(self.today()):
                raise ValidationError(f"Contract {contract_id} has not reached its end date.")
            result = self._expire(contract)
        return result

    def _expire(self, contract: MaintenanceContract) -> dict[str, Any]:
        status_updated = False
        if ContractStatus(contract.status) in (ContractStatus.ACTIVE, ContractStatus.PAUSED):
            contract.status = ContractStatus.COMPLETED
            status_updated = True
        cancelled = self.scheduling.cancel_future_for_contract(contract, note="contract expired")
        self.db.flush()
        logger.info(
            "contract.expired",
            extra={
                "event": "contract.expired",
                "tenant_id": contract.tenant_id,
                "contract_id": contract.id,
                "cancelled_visits": cancelled,
            },
        )
        return {"contract_id": contract.id, "status_updated": status_updated, "cancelled_visits": cancelled}

    def get_expiring_contracts(self, scope: AccessScope, days: int | None = None) -> list[MaintenanceContract]:
        window = self.config.EXPIRING_SOON_DAYS if days is None else days
        if window < 0:
            raise ValidationError("days must be >= 0.")
        today = self.today()
        stmt = (
            self.scoped_contracts(scope)
            .where(
                MaintenanceContract.status == ContractStatus.ACTIVE,
                MaintenanceContract.end_date.is_not(None),
                MaintenanceContract.end_date >= today,
                MaintenanceContract.end_date <= today + timedelta(days=window),
            )
            .order_by(MaintenanceContract.end_date, MaintenanceContract.id)
        )
        return list(self.db.scalars(stmt))

    def process_expired_contracts(self, tenant_id: int | None = None) -> dict[str, int]:
        """Expire every active contract past its end date, one transaction per contract."""
        stmt = select(MaintenanceContract.id).where(
            MaintenanceContract.status == ContractStatus.ACTIVE,
            MaintenanceContract.end_date.is_not(None),
            MaintenanceContract.end_date < self.today(),
            MaintenanceContract.deleted_at.is_(None),
        )
        if tenant_id is not None:
            stmt = stmt.where(MaintenanceContract.tenant_id == tenant_id)
        contract_ids = list(self.db.scalars(stmt.order_by(MaintenanceContract.id)))

        results = {"processed_contracts": 0, "total_cancelled_visits": 0, "failed_contracts": 0}
        for contract_id in contract_ids:
            try:
                with self.transaction():
                    contract = self.db.scalar(
                        select(MaintenanceContract).where(MaintenanceContract.id == contract_id).with_for_update()
                    )
                    if contract is None or ContractStatus(contract.status) is not ContractStatus.ACTIVE:
                        continue
                    outcome = self._expire(contract)
            except UpkeepException:
                results["failed_contracts"] += 1
                logger.exception(
                    "contract.expiration_failed",
                    extra={"event": "contract.expiration_failed", "contract_id": contract_id},
                )
                continue
            results["processed_contracts"] += 1
            results["total_cancelled_visits"] += outcome["cancelled_visits"]
        return results

    def delete_contract(self, scope: AccessScope, contract_id: int, actor_id: int | None = None) -> None:
        """Soft delete; future scheduled visits are cancelled first."""
        with self.transaction():
            contract = self.find_contract(scope, contract_id, for_update=True)
            self.scheduling.cancel_future_for_contract(contract, actor_id=actor_id, note="contract deleted")
            contract.deleted_at = utcnow()
            self.db.flush()
        logger.info(
            "contract.deleted",
            extra={"event": "contract.deleted", "tenant_id": contract.tenant_id, "contract_id": contract_id},
        )

    def get_contract_health(self, scope: AccessScope, contract_id: int) -> dict[str, Any]:
        contract = self.find_contract(scope, contract_id)
        today = self.today()
        counts = dict(
            self.db.execute(
                select(MaintenanceVisit.status, func.count(MaintenanceVisit.id))
                .where(
                    MaintenanceVisit.maintenance_contract_id == contract.id,
                    MaintenanceVisit.deleted_at.is_(None),
                )
                .group_by(MaintenanceVisit.status)
            ).all()
        )
        total = sum(counts.values())
        completed = counts.get(VisitStatus.COMPLETED, 0)
        planned = self.planned_visit_count(contract)
        completion_rate = round(completed / total * 100, 2) if total else 0.0
        days_left = (contract.end_date - today).days if contract.end_date is not None else None
        return {
            "contract_id": contract.id,
            "status": ContractStatus(contract.status).value,
            "total_visits": total,
            "planned_visits": planned,
            "completed_visits": completed,
            "missed_visits": counts.get(VisitStatus.MISSED, 0),
            "remaining_visits": max(0, planned - completed) if planned is not None else None,
            "completion_rate": completion_rate,
            "days_until_expiry": days_left,
            "is_expiring_soon": days_left is not None and 0 <= days_left <= self.config.EXPIRING_SOON_DAYS,
            "is_expired": days_left is not None and days_left < 0,
            "health_status": health_bucket(completion_rate, days_left, self.config.CRITICAL_EXPIRY_DAYS),
        }

    def planned_visit_count(self, contract: MaintenanceContract) -> int | None:
        """Visits the schedule implies between start and end; None when open-ended."""
        if contract.end_date is None:
            return None
        return sum(1 for _ in iter_occurrences(contract.start_date, contract.schedule_step(), contract.end_date))
