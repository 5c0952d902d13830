from datetime import datetime

from sqlalchemy import select

from app.tillbook.db.models import CheckoutSession


class CheckoutSessionRepository:
    def __init__(self, db):
        self.db = db

    def get(self, session_id: str, business_id: str, *, for_update: bool = False) -> CheckoutSession | None:
        stmt = select(CheckoutSession).where(
            CheckoutSession.id == session_id,
            CheckoutSession.business_id == business_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def create(self, session: CheckoutSession) -> CheckoutSession:
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def save_state(self, session: CheckoutSession, state: dict) -> CheckoutSession:
        session.state = state
        session.updated_at = datetime.utcnow()
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session
