import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy import select

from upkeep.auth.access_scope import AccessScope
from upkeep.auth.jwt import create_token_pair
from upkeep.core.config import get_config
from upkeep.core.enums import ContractFrequency, UserRole
from upkeep.database.db import get_db_session
from upkeep.models import Branch, Product, Tenant, User, UserBranch
from upkeep.services.contract_service import ContractService

DEMO_TENANT_KEY = "demo"


def seed_demo_tenant():
    with get_db_session() as db:
        if db.scalar(select(Tenant.id).where(Tenant.tenant_key == DEMO_TENANT_KEY)) is not None:
            print("Demo tenant already exists.")
            return

        print("Seeding demo tenant...")
        tenant = Tenant(tenant_key=DEMO_TENANT_KEY, name="Demo Facilities")
        db.add(tenant)
        db.flush()

        branch = Branch(tenant_id=tenant.id, name="Downtown", code="DT")
        db.add(branch)
        db.flush()

        admin = User(tenant_id=tenant.id, email="admin@demo.test", full_name="Dana Admin", role=UserRole.TENANT_ADMIN)
        technician = User(tenant_id=tenant.id, email="tech@demo.test", full_name="Theo Tech", role=UserRole.TECHNICIAN)
        db.add_all([admin, technician])
        db.flush()
        db.add(UserBranch(user_id=technician.id, branch_id=branch.id))

        filter_part = Product(
            tenant_id=tenant.id,
            name="HVAC filter",
            sku="HVAC-F1",
            price=Decimal("18.50"),
            stock_quantity=40,
            is_spare_part=True,
        )
        db.add(filter_part)
        db.commit()

        contract = ContractService(db).create_contract(
            AccessScope.system(tenant.id),
            {
                "branch_id": branch.id,
                "customer_name": "Riverside Offices",
                "frequency": ContractFrequency.MONTHLY,
                "start_date": date.today(),
                "end_date": date(date.today().year + 1, date.today().month, 1),
                "assigned_technician_id": technician.id,
                "items": [{"product_id": filter_part.id, "quantity": 2, "unit_cost": "18.50"}],
            },
            actor_id=admin.id,
            generate_visits=True,
        )
        print(f"Seeded contract #{contract.id} for {contract.customer_name}")

        token = create_token_pair(admin.id, tenant.id, UserRole.TENANT_ADMIN.value, secret=get_config().JWT_SECRET)
        print(f"Admin access token: {token.access_token}")


if __name__ == "__main__":
    seed_demo_tenant()
