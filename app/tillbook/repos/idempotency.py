from dataclasses import dataclass

from sqlalchemy import select

from app.tillbook.db.models import IdempotencyRecord


@dataclass(frozen=True)
class IdempotencyScope:
    """One cached response slot: a key is only unique per business, path and verb."""

    business_id: str
    endpoint: str
    method: str
    idempotency_key: str

    def as_columns(self) -> dict:
        return {
            "business_id": self.business_id,
            "endpoint": self.endpoint,
            "method": self.method,
            "idempotency_key": self.idempotency_key,
        }


class IdempotencyRepository:
    def __init__(self, db):
        self.db = db

    def find(self, scope: IdempotencyScope) -> IdempotencyRecord | None:
        stmt = select(IdempotencyRecord).filter_by(**scope.as_columns())
        return self.db.execute(stmt).scalars().first()

    def claim(self, scope: IdempotencyScope, request_hash: str) -> IdempotencyRecord:
        record = IdempotencyRecord(**scope.as_columns(), request_hash=request_hash, state="in_progress")
        self.db.add(record)
        self.db.commit()
        return record

    def save(self, record: IdempotencyRecord) -> IdempotencyRecord:
        self.db.add(record)
        self.db.commit()
        return record
