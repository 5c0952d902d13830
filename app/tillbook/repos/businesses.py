from sqlalchemy import select

from app.tillbook.db.models import Business, TaxRule


class BusinessRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, business_id: str) -> Business | None:
        return self.db.get(Business, business_id)

    def list_active_tax_rules(self, business_id: str) -> list[TaxRule]:
        stmt = (
            select(TaxRule)
            .where(TaxRule.business_id == business_id, TaxRule.is_active.is_(True))
            .order_by(TaxRule.created_at, TaxRule.name)
        )
        return self.db.execute(stmt).scalars().all()
