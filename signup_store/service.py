"""
Boundary operations of the sign-up store.

`SignupService` is what the HTTP layer and the CLI call. It validates the
caller's fields, builds the table mutation, and runs it through the
coordinator. Duplicates and missing records come back as result fields;
fatal store errors (`ResourceError`, `WriteError`) and `BusyError` propagate
so the caller can map them to distinct responses.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TypedDict, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from signup_store.config import Settings
from signup_store.coordinator import Mutation, SyncCoordinator, SyncReport
from signup_store.domain.models import Record
from signup_store.domain.table import RecordTable
from signup_store.errors import DuplicateError, NotFoundError, ValidationError
from signup_store.infrastructure.remote import ObjectStore
from signup_store.utils.logging import get_logger

log = get_logger(__name__)

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
PHONE_PATTERN = r"^\d{10}$"

F = TypeVar("F", bound=BaseModel)


class SignupForm(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: str = Field(..., pattern=PHONE_PATTERN)

    model_config = {"str_strip_whitespace": True}


class PrizeForm(BaseModel):
    email: str = Field(..., min_length=1)
    prize: str = Field(..., min_length=1)

    model_config = {"str_strip_whitespace": True}


_FIELD_MESSAGES = {
    "name": "Missing required fields",
    "email": "Invalid email format",
    "phone": "Invalid phone number (10 digits required)",
    "prize": "Missing email or prize",
}


class SubmitResult(TypedDict):
    ok: bool
    name: str
    duplicate_field: Optional[str]
    warning: Optional[str]


class DeleteResult(TypedDict):
    ok: bool
    found: bool
    removed: int
    warning: Optional[str]


class PrizeResult(TypedDict):
    ok: bool
    found: bool
    warning: Optional[str]


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _validate(form: Type[F], **fields: Any) -> F:
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise ValidationError("Missing required fields", field=missing[0])
    try:
        return form(**{name: str(value) for name, value in fields.items()})
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else None
        raise ValidationError(_FIELD_MESSAGES.get(field or "", first["msg"]), field=field) from exc


class SignupService:
    """
    Coordinator-wrapped submit / delete / prize / read / export operations.

    Parameters
    ----------
    coordinator : SyncCoordinator
        Serializes every operation against the table.
    prizes : Sequence[str]
        Prizes `update_prize` accepts.
    today : Callable[[], date]
        Clock used to stamp submissions.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        prizes: Sequence[str] = (),
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.coordinator = coordinator
        self.prizes = tuple(prizes)
        self._today = today

    @classmethod
    def from_settings(
        cls, settings: Settings, store: Optional[ObjectStore] = None
    ) -> "SignupService":
        return cls(SyncCoordinator.from_settings(settings, store=store), prizes=settings.prizes)

    def start(self, background: bool = True) -> None:
        self.coordinator.start(background=background)

    def stop(self) -> None:
        self.coordinator.stop()

    def submit(self, name: Any, email: Any, phone: Any) -> SubmitResult:
        form = _validate(SignupForm, name=name, email=email, phone=phone)
        record = Record(
            name=form.name, email=form.email, phone=form.phone, date=self._today().isoformat()
        )

        def apply(table: RecordTable) -> Mutation[str]:
            return Mutation(table.insert(record), record.name)

        try:
            outcome = self.coordinator.mutate(apply, label="submit")
        except DuplicateError as exc:
            log.info("[SUBMIT] duplicate rejected", extra={"duplicate_field": exc.field})
            return SubmitResult(ok=False, name=record.name, duplicate_field=exc.field, warning=None)

        log.info("[SUBMIT] record added", extra={"synced": outcome.warning is None})
        return SubmitResult(
            ok=True, name=outcome.result, duplicate_field=None, warning=outcome.warning
        )

    def delete(self, email: Optional[str] = None, phone: Optional[str] = None) -> DeleteResult:
        if not (email and str(email).strip()) and not (phone and str(phone).strip()):
            raise ValidationError("An email or a phone is required", field="email")

        def apply(table: RecordTable) -> Mutation[int]:
            remaining, found = table.delete_by_key(email=email, phone=phone)
            if not found:
                raise NotFoundError("No record matches the given email or phone")
            return Mutation(remaining, len(table) - len(remaining))

        try:
            outcome = self.coordinator.mutate(apply, label="delete")
        except NotFoundError:
            return DeleteResult(ok=True, found=False, removed=0, warning=None)

        log.info("[DELETE] records removed", extra={"removed": outcome.result})
        return DeleteResult(ok=True, found=True, removed=outcome.result, warning=outcome.warning)

    def update_prize(self, email: Any, prize: Any) -> PrizeResult:
        form = _validate(PrizeForm, email=email, prize=prize)
        if self.prizes and form.prize not in self.prizes:
            raise ValidationError(f"Invalid prize: {form.prize}", field="prize")

        def apply(table: RecordTable) -> Mutation[bool]:
            updated, found = table.update_field(form.email, "prize", form.prize)
            if not found:
                raise NotFoundError("Email not found")
            return Mutation(updated, True, changed=updated != table)

        try:
            outcome = self.coordinator.mutate(apply, label="save-prize")
        except NotFoundError:
            log.info("[PRIZE] email not found")
            return PrizeResult(ok=False, found=False, warning=None)
        return PrizeResult(ok=True, found=True, warning=outcome.warning)

    def list_records(self) -> List[Record]:
        return self.coordinator.read(lambda table: list(table.records), label="list")

    def export_snapshot(self) -> bytes:
        return self.coordinator.read(lambda _table: self.coordinator.persistence.snapshot(), label="export")

    def sync(self, force: bool = False) -> SyncReport:
        return self.coordinator.sync_now(force=force)

    def pull(self, force: bool = False) -> str:
        return self.coordinator.pull(force=force)

    def status(self) -> Dict[str, Any]:
        """Lock-free view of the sync state, safe for health checks."""
        return {
            **self.coordinator.state.snapshot(),
            "path": str(self.coordinator.persistence.path),
            "busy": self.coordinator.busy,
        }


__all__ = [
    "DeleteResult",
    "PrizeResult",
    "SignupForm",
    "SignupService",
    "SubmitResult",
]
