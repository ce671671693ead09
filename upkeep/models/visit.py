"""Maintenance visit, consumed-part and status-history models."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Time,
    event,
    select,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from upkeep.core.enums import VisitPriority, VisitStatus
from upkeep.core.exceptions import ValidationError
from upkeep.models.base import AuditMixin, Base, BranchScopedMixin, TenantScopedMixin, enum_type, utcnow_naive
from upkeep.models.contract import MaintenanceContract

TERMINAL_VISIT_STATUSES = frozenset({VisitStatus.COMPLETED, VisitStatus.CANCELLED})


class MaintenanceVisit(Base, AuditMixin, TenantScopedMixin, BranchScopedMixin):
    __tablename__ = "maintenance_visits"
    __table_args__ = (
        CheckConstraint(
            "customer_rating IS NULL OR (customer_rating >= 1 AND customer_rating <= 5)",
            name="ck_visits_rating_range",
        ),
        # One open occurrence per contract and calendar day.
        Index(
            "uq_visits_contract_date_scheduled",
            "maintenance_contract_id",
            "scheduled_date",
            unique=True,
            sqlite_where=text("status = 'scheduled'"),
            postgresql_where=text("status = 'scheduled'"),
        ),
        Index("idx_visits_tenant_status", "tenant_id", "status"),
        Index("idx_visits_tenant_scheduled_date", "tenant_id", "scheduled_date"),
        Index("idx_visits_tenant_technician", "tenant_id", "assigned_technician_id"),
        Index("idx_visits_tenant_contract", "tenant_id", "maintenance_contract_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    maintenance_contract_id: Mapped[int] = mapped_column(
        ForeignKey("maintenance_contracts.id", ondelete="RESTRICT"), nullable=False
    )
    assigned_technician_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[time | None] = mapped_column(Time)
    priority: Mapped[VisitPriority] = mapped_column(enum_type(VisitPriority), default=VisitPriority.MEDIUM, nullable=False)
    status: Mapped[VisitStatus] = mapped_column(enum_type(VisitStatus), default=VisitStatus.SCHEDULED, nullable=False)
    work_description: Mapped[str | None] = mapped_column(Text)
    actual_start_time: Mapped[datetime | None] = mapped_column(DateTime)
    actual_end_time: Mapped[datetime | None] = mapped_column(DateTime)
    completion_notes: Mapped[str | None] = mapped_column(Text)
    customer_feedback: Mapped[str | None] = mapped_column(Text)
    customer_rating: Mapped[int | None] = mapped_column(Integer)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    photos: Mapped[list[str] | None] = mapped_column(JSON)
    rescheduled_from: Mapped[date | None] = mapped_column(Date)
    rescheduled_at: Mapped[datetime | None] = mapped_column(DateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime)
    missed_at: Mapped[datetime | None] = mapped_column(DateTime)
    started_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    completed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    contract = relationship("MaintenanceContract", back_populates="visits")
    assigned_technician = relationship("User", foreign_keys=[assigned_technician_id])
    items = relationship("MaintenanceVisitItem", back_populates="visit", order_by="MaintenanceVisitItem.id")
    status_history = relationship("VisitStatusHistory", back_populates="visit", order_by="VisitStatusHistory.id")

    @classmethod
    def for_contract(cls, contract: MaintenanceContract, **fields: Any) -> "MaintenanceVisit":
        """Build a visit that inherits tenant and branch from its contract."""
        return cls(
            tenant_id=contract.tenant_id,
            branch_id=contract.branch_id,
            maintenance_contract_id=contract.id,
            **fields,
        )

    @validates("tenant_id", "branch_id", "maintenance_contract_id")
    def _validate_immutable_ownership(self, key: str, value: int) -> int:
        current = getattr(self, key, None)
        if current is not None and value != current:
            raise ValidationError(f"Visit {key} cannot change after creation.")
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_VISIT_STATUSES

    @property
    def actual_duration_minutes(self) -> float | None:
        if self.actual_start_time and self.actual_end_time:
            return (self.actual_end_time - self.actual_start_time).total_seconds() / 60
        return None

    def calculate_total_cost(self) -> Decimal:
        return sum((Decimal(item.total_cost) for item in self.items), Decimal("0"))


@event.listens_for(MaintenanceVisit, "before_insert")
def _enforce_contract_ownership(mapper, connection, target: MaintenanceVisit) -> None:
    row = connection.execute(
        select(MaintenanceContract.tenant_id, MaintenanceContract.branch_id).where(
            MaintenanceContract.id == target.maintenance_contract_id
        )
    ).first()
    if row is None:
        raise ValidationError(f"Contract {target.maintenance_contract_id} does not exist.")
    if (row.tenant_id, row.branch_id) != (target.tenant_id, target.branch_id):
        raise ValidationError("Visit tenant and branch must match its contract.")


class MaintenanceVisitItem(Base, AuditMixin, TenantScopedMixin):
    """Part consumed during a visit."""

    __tablename__ = "maintenance_visit_items"
    __table_args__ = (
        Index("idx_visit_items_visit", "maintenance_visit_id"),
        Index("idx_visit_items_tenant_product", "tenant_id", "product_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    maintenance_visit_id: Mapped[int] = mapped_column(
        ForeignKey("maintenance_visits.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    visit = relationship("MaintenanceVisit", back_populates="items")
    product = relationship("Product")


class VisitStatusHistory(Base, TenantScopedMixin):
    """One row per visit status change."""

    __tablename__ = "visit_status_history"
    __table_args__ = (Index("idx_visit_status_history_visit", "visit_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    visit_id: Mapped[int] = mapped_column(ForeignKey("maintenance_visits.id", ondelete="CASCADE"), nullable=False)
    from_status: Mapped[VisitStatus | None] = mapped_column(enum_type(VisitStatus))
    to_status: Mapped[VisitStatus] = mapped_column(enum_type(VisitStatus), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    note: Mapped[str | None] = mapped_column(Text)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, nullable=False)

    visit = relationship("MaintenanceVisit", back_populates="status_history")
