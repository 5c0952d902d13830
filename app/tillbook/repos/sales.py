from __future__ import annotations

from datetime import date

from sqlalchemy import func, select

from app.tillbook.db.models import Receipt, Sale, SaleItem, SaleTender


class SaleRepository:
    """Insert helpers for the settlement pipeline.

    Nothing here commits; the caller owns the transaction.
    """

    def __init__(self, db):
        self.db = db

    def count_for_business_date(self, business_id: str, business_date: date) -> int:
        stmt = select(func.count()).select_from(Sale).where(
            Sale.business_id == business_id,
            Sale.business_date == business_date,
        )
        return int(self.db.execute(stmt).scalar_one())

    def add_sale(self, sale: Sale) -> Sale:
        self.db.add(sale)
        self.db.flush()
        return sale

    def add_receipt(self, receipt: Receipt) -> Receipt:
        self.db.add(receipt)
        self.db.flush()
        return receipt

    def add_items(self, items: list[SaleItem]) -> list[SaleItem]:
        self.db.add_all(items)
        self.db.flush()
        return items

    def add_tenders(self, tenders: list[SaleTender]) -> list[SaleTender]:
        self.db.add_all(tenders)
        self.db.flush()
        return tenders

    def get_by_id(self, sale_id: str) -> Sale | None:
        return self.db.execute(select(Sale).where(Sale.id == sale_id)).scalars().first()

    def get_items(self, sale_id: str) -> list[SaleItem]:
        return (
            self.db.execute(select(SaleItem).where(SaleItem.sale_id == sale_id).order_by(SaleItem.line_number))
            .scalars()
            .all()
        )

    def get_tenders(self, sale_id: str) -> list[SaleTender]:
        return (
            self.db.execute(select(SaleTender).where(SaleTender.sale_id == sale_id).order_by(SaleTender.sequence))
            .scalars()
            .all()
        )

    def get_receipt(self, sale_id: str) -> Receipt | None:
        return self.db.execute(select(Receipt).where(Receipt.sale_id == sale_id)).scalars().first()
