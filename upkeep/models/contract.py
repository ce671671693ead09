"""Maintenance contract model module."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from upkeep.core.enums import ContractFrequency, ContractStatus, FrequencyUnit, VisitPriority
from upkeep.models.base import AuditMixin, Base, BranchScopedMixin, TenantScopedMixin, enum_type
from upkeep.utils.recurrence import frequency_step, next_occurrence_after


class MaintenanceContract(Base, AuditMixin, TenantScopedMixin, BranchScopedMixin):
    __tablename__ = "maintenance_contracts"
    __table_args__ = (
        CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_contracts_date_order"),
        Index("idx_contracts_tenant_status", "tenant_id", "status"),
        Index("idx_contracts_tenant_branch", "tenant_id", "branch_id"),
        Index("idx_contracts_tenant_end_date", "tenant_id", "end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int | None] = mapped_column(Integer)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"))
    customer_id: Mapped[int | None] = mapped_column(Integer)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(64))
    customer_email: Mapped[str | None] = mapped_column(String(320))
    customer_address: Mapped[str | None] = mapped_column(Text)
    assigned_technician_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    frequency: Mapped[ContractFrequency] = mapped_column(enum_type(ContractFrequency), nullable=False)
    frequency_value: Mapped[int | None] = mapped_column(Integer)
    frequency_unit: Mapped[FrequencyUnit | None] = mapped_column(enum_type(FrequencyUnit))
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    contract_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    priority: Mapped[VisitPriority] = mapped_column(enum_type(VisitPriority), default=VisitPriority.MEDIUM, nullable=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    special_instructions: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ContractStatus] = mapped_column(enum_type(ContractStatus), default=ContractStatus.ACTIVE, nullable=False)
    renewed_from_id: Mapped[int | None] = mapped_column(ForeignKey("maintenance_contracts.id", ondelete="SET NULL"))

    product = relationship("Product")
    assigned_technician = relationship("User")
    items = relationship(
        "MaintenanceContractItem",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="MaintenanceContractItem.position",
    )
    visits = relationship("MaintenanceVisit", back_populates="contract")

    def schedule_step(self):
        return frequency_step(self.frequency, self.frequency_value, self.frequency_unit)

    def calculate_next_visit_date(self, from_date: date | None = None) -> date | None:
        """Next calendar occurrence after ``from_date`` (or start_date); None for one-off contracts."""
        return next_occurrence_after(self.start_date, self.schedule_step(), from_date or self.start_date)

    def is_expired(self, today: date) -> bool:
        return self.end_date is not None and self.end_date < today

    @property
    def is_active(self) -> bool:
        return self.status == ContractStatus.ACTIVE


class MaintenanceContractItem(Base, AuditMixin, TenantScopedMixin):
    """Maintenance product line item included in a contract."""

    __tablename__ = "maintenance_contract_items"
    __table_args__ = (Index("idx_contract_items_contract", "maintenance_contract_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    maintenance_contract_id: Mapped[int] = mapped_column(
        ForeignKey("maintenance_contracts.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_included: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    contract = relationship("MaintenanceContract", back_populates="items")
    product = relationship("Product")

    @property
    def total_cost(self) -> Decimal:
        return Decimal(self.quantity) * Decimal(self.unit_cost)
