from sqlalchemy import select

from app.tillbook.db.models import User

MANAGER_ROLES = ("MANAGER", "OWNER")


class UserRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, user_id: str):
        return self.db.get(User, user_id)

    def get_by_username_or_email(self, identifier: str):
        stmt = select(User).where((User.username == identifier) | (User.email == identifier))
        return self.db.execute(stmt).scalars().first()

    def list_active_managers(self, business_id: str) -> list[User]:
        stmt = (
            select(User)
            .where(
                User.business_id == business_id,
                User.role.in_(MANAGER_ROLES),
                User.is_active.is_(True),
                User.hashed_pin.is_not(None),
            )
            .order_by(User.created_at)
        )
        return self.db.execute(stmt).scalars().all()
