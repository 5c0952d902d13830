import hashlib
import json
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.db.models import IdempotencyRecord
from app.tillbook.repos.idempotency import IdempotencyRepository, IdempotencyScope


IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "X-Idempotency-Result"

STATE_IN_PROGRESS = "in_progress"
STATE_SUCCEEDED = "succeeded"
STATE_FAILED = "failed"


@dataclass
class IdempotencyReplay:
    status_code: int
    response_body: dict


class IdempotencyContext:
    """Handle for a claimed key; the request finishes it exactly once."""

    def __init__(self, record: IdempotencyRecord, repo: IdempotencyRepository):
        self._record = record
        self._repo = repo

    def record_success(self, *, status_code: int, response_body: dict) -> None:
        self._finish(STATE_SUCCEEDED, status_code, response_body)

    def record_failure(self, *, status_code: int, response_body: dict) -> None:
        self._finish(STATE_FAILED, status_code, response_body)

    def _finish(self, state: str, status_code: int, response_body: dict) -> None:
        self._record.state = state
        self._record.status_code = status_code
        self._record.response_body = json.dumps(response_body, default=str)
        self._record.updated_at = datetime.utcnow()
        self._repo.save(self._record)


class IdempotencyService:
    def __init__(self, db):
        self.repo = IdempotencyRepository(db)

    @staticmethod
    def fingerprint(payload: object) -> str:
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def start(
        self,
        *,
        business_id: str,
        endpoint: str,
        method: str,
        idempotency_key: str,
        request_hash: str,
    ) -> tuple[IdempotencyContext | None, IdempotencyReplay | None]:
        scope = IdempotencyScope(business_id, endpoint, method, idempotency_key)
        existing = self.repo.find(scope)
        if existing is not None:
            return None, self._replay(existing, request_hash)
        try:
            record = self.repo.claim(scope, request_hash)
        except IntegrityError:
            # Another terminal claimed the same key between find and claim.
            self.repo.db.rollback()
            return None, self._replay(self.repo.find(scope), request_hash)
        return IdempotencyContext(record, self.repo), None

    @staticmethod
    def _replay(existing: IdempotencyRecord | None, request_hash: str) -> IdempotencyReplay:
        if existing is None:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        if existing.request_hash != request_hash:
            raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD)
        if existing.state == STATE_IN_PROGRESS or existing.response_body is None or existing.status_code is None:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        return IdempotencyReplay(status_code=existing.status_code, response_body=json.loads(existing.response_body))


def extract_idempotency_key(headers, *, required: bool) -> str | None:
    key = (headers.get(IDEMPOTENCY_HEADER) or "").strip()
    if not key and required:
        raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REQUIRED)
    return key or None
