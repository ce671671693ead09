"""Modular SQLAlchemy model package for the tenant-aware maintenance schema."""

from upkeep.models.base import Base
from upkeep.models.branch import Branch, UserBranch
from upkeep.models.contract import MaintenanceContract, MaintenanceContractItem
from upkeep.models.product import Product, StockMovement
from upkeep.models.tenant import Tenant
from upkeep.models.user import User
from upkeep.models.visit import MaintenanceVisit, MaintenanceVisitItem, VisitStatusHistory

__all__ = [
    "Base",
    "Branch",
    "MaintenanceContract",
    "MaintenanceContractItem",
    "MaintenanceVisit",
    "MaintenanceVisitItem",
    "Product",
    "StockMovement",
    "Tenant",
    "User",
    "UserBranch",
    "VisitStatusHistory",
]
