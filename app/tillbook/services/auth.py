from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.security import issue_staff_token, verify_secret
from app.tillbook.repos.users import UserRepository
from app.tillbook.services.audit import AuditEventPayload, AuditService


class AuthService:
    def __init__(self, db, *, trace_id: str | None = None):
        self.repo = UserRepository(db)
        self.audit = AuditService(db)
        self.trace_id = trace_id or None

    def login(self, identifier: str, password: str):
        user = self.repo.get_by_username_or_email(identifier)
        try:
            if user is None or not verify_secret(password, user.hashed_password):
                raise AppError(ErrorCatalog.INVALID_CREDENTIALS)
            if not user.is_active:
                raise AppError(ErrorCatalog.USER_INACTIVE)
        except AppError as exc:
            # Unknown identifiers have no business to attach the event to.
            if user is not None:
                self._audit(user, identifier, "auth.login.failed", "failure", {"error_code": exc.error.code})
            raise
        self._audit(user, user.username, "auth.login", "success", None)
        return user, issue_staff_token(user)

    def _audit(self, user, actor: str, action: str, result: str, metadata: dict | None) -> None:
        self.audit.record_event(
            AuditEventPayload(
                business_id=str(user.business_id),
                user_id=str(user.id),
                trace_id=self.trace_id,
                actor=actor,
                action=action,
                entity_type="user",
                entity_id=str(user.id),
                before=None,
                after=None,
                metadata=metadata,
                result=result,
                actor_role=user.role,
            )
        )
