"""
CostLedgerService -- Create, update and delete cost items, then reconcile.

Responsibility:
    The write side of the cost ledger.  Validates a cost item before it is
    stored, commits the ledger write on its own, and then asks
    ReconciliationService to bring the project's breakdowns and aggregate
    up to date.

Architecture position:
    Kernel > Services.  The entry point for every caller that changes the
    ledger (request handlers, importers).  Depends on
    ReconciliationService; never computes aggregates itself.

Invariants enforced:
    - A stored cost item has a category from the closed set, a known
      status and a non-negative amount quantized to cents.
    - ``project_id`` never changes after creation.
    - Every create and delete, and every update touching amount,
      category or status, is followed by a reconciliation of the project
      after the ledger write has committed.

Failure modes:
    - InvalidDataError subclasses for invalid input; nothing is written.
    - ProjectNotFoundError / CostItemNotFoundError for unknown ids.
    - StorageError if the ledger write itself fails (rolled back).
    - A failed reconciliation does NOT raise.  The ledger write already
      succeeded; the error is returned on ``MutationResult`` and
      ``aggregates_stale`` is True so the caller can retry reconciliation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from costcontrol_kernel.db.types import round_money, to_decimal
from costcontrol_kernel.domain.dtos import CostItemRecord
from costcontrol_kernel.domain.values import (
    CostCategory,
    CostItemStatus,
    CostSource,
    is_forward_transition,
    parse_category,
    parse_source,
    parse_status,
)
from costcontrol_kernel.exceptions import (
    CostControlError,
    CostItemNotFoundError,
    ImmutableFieldError,
    InvalidDataError,
    NegativeAmountError,
    ProjectNotFoundError,
    StorageError,
    UnknownStatusError,
)
from costcontrol_kernel.logging_config import LogContext, get_logger
from costcontrol_kernel.models.cost_item import CostItemModel
from costcontrol_kernel.models.project import CostControlProjectModel
from costcontrol_kernel.services.reconciliation_service import (
    ReconciliationResult,
    ReconciliationService,
)

logger = get_logger("services.cost_ledger")

# Changes to these fields alter the rollup and require reconciliation.
RECONCILED_FIELDS = frozenset({"amount", "category", "status"})

_DESCRIPTIVE_FIELDS = frozenset({
    "item_date",
    "description",
    "source",
    "source_id",
    "invoice_number",
    "supplier_name",
    "approved_by",
})

_IMMUTABLE_FIELDS = frozenset({"id", "project_id"})


@dataclass(frozen=True)
class MutationResult:
    """
    Outcome of a write followed by reconciliation.

    ``record`` is the written (or, for deletes, the removed) record, or
    None when the stored row has an invalid category or status.
    ``reconciliation`` is None when no reconciliation was needed or when
    it failed; in the latter case ``reconciliation_error`` is set.
    """

    record: Any
    reconciliation: ReconciliationResult | None = None
    reconciliation_error: CostControlError | None = None

    @property
    def aggregates_stale(self) -> bool:
        """True when the derived totals may not reflect this write yet."""
        return self.reconciliation_error is not None


def validate_amount(value: Decimal | int | str, cost_item_id: str | None = None) -> Decimal:
    """
    Parse a cost item amount and quantize it to cents.

    Raises:
        InvalidDataError: If the value is not a finite number (floats are
            refused).
        NegativeAmountError: If the value is negative.
    """
    try:
        amount = to_decimal(value)
    except ValueError as exc:
        raise InvalidDataError(f"Invalid amount {value!r}: {exc}") from exc
    if amount < 0:
        raise NegativeAmountError(str(amount), cost_item_id)
    return round_money(amount)


class CostLedgerService:
    """
    Ledger write API with the reconcile-after-commit trigger.

    Usage:
        reconciler = ReconciliationService(session, clock)
        ledger = CostLedgerService(session, reconciler)
        result = ledger.create_cost_item(
            project_id, "materials", Decimal("3000"), date(2024, 3, 1), actor_id,
            status=CostItemStatus.PAID,
        )
        if result.aggregates_stale:
            ...  # warn: totals may be out of date
    """

    def __init__(self, session: Session, reconciler: ReconciliationService):
        self.session = session
        self._reconciler = reconciler

    def create_cost_item(
        self,
        project_id: UUID,
        category: CostCategory | str,
        amount: Decimal | int | str,
        item_date: date,
        actor_id: UUID,
        status: CostItemStatus | str = CostItemStatus.COMMITTED,
        description: str = "",
        source: CostSource | str = CostSource.MANUAL,
        source_id: str | None = None,
        invoice_number: str | None = None,
        supplier_name: str | None = None,
        approved_by: str | None = None,
    ) -> MutationResult:
        """Validate and store a new cost item, then reconcile its project."""
        parsed_category = parse_category(category)
        parsed_status = parse_status(status)
        parsed_amount = validate_amount(amount)
        parsed_source = parse_source(source)

        with LogContext.bind(project_id=str(project_id), actor_id=str(actor_id)):
            try:
                if self.session.get(CostControlProjectModel, project_id) is None:
                    raise ProjectNotFoundError(str(project_id))
                model = CostItemModel(
                    project_id=project_id,
                    category=parsed_category.value,
                    status=parsed_status.value,
                    amount=parsed_amount,
                    item_date=item_date,
                    description=description or "",
                    source=parsed_source.value,
                    source_id=source_id,
                    invoice_number=invoice_number,
                    supplier_name=supplier_name,
                    approved_by=approved_by,
                    created_by_id=actor_id,
                )
                self.session.add(model)
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StorageError("create_cost_item", str(exc)) from exc

            record = model.to_dto()
            logger.info(
                "cost_item_created",
                extra={
                    "cost_item_id": str(record.id),
                    "category": record.category.value,
                    "status": record.status.value,
                    "amount": record.amount,
                },
            )
            return self._reconcile_after_write(record.project_id, record.id, record, actor_id)

    def update_cost_item(
        self,
        cost_item_id: UUID,
        actor_id: UUID,
        **changes: Any,
    ) -> MutationResult:
        """
        Apply field changes to a cost item.

        Reconciles only when amount, category or status actually changed.
        A stored row whose category or status is outside the closed sets
        can be corrected this way; ``record`` is None while it stays invalid.

        Raises:
            ImmutableFieldError: If ``project_id`` (or ``id``) is passed.
            InvalidDataError: For unknown fields or invalid values.
            CostItemNotFoundError: If the item does not exist.
        """
        for name in changes:
            if name in _IMMUTABLE_FIELDS:
                raise ImmutableFieldError("CostItem", name)
            if name not in RECONCILED_FIELDS and name not in _DESCRIPTIVE_FIELDS:
                raise InvalidDataError(f"Unknown cost item field: {name!r}")

        item_key = str(cost_item_id)
        values = self._parse_changes(changes, item_key)

        with LogContext.bind(cost_item_id=item_key, actor_id=str(actor_id)):
            try:
                model = self.session.get(CostItemModel, cost_item_id, populate_existing=True)
                if model is None:
                    raise CostItemNotFoundError(item_key)

                changed = sorted(
                    name for name, value in values.items()
                    if getattr(model, name) != value
                )
                if "status" in changed:
                    self._warn_on_status_regression(model.status, values["status"], item_key)

                for name in changed:
                    setattr(model, name, values[name])
                if changed:
                    model.updated_by_id = actor_id
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StorageError("update_cost_item", str(exc)) from exc

            project_id = model.project_id
            record = self._record_or_none(model)
            logger.info(
                "cost_item_updated",
                extra={"project_id": str(project_id), "changed_fields": changed},
            )
            if not RECONCILED_FIELDS.intersection(changed):
                return MutationResult(record=record)
            return self._reconcile_after_write(project_id, cost_item_id, record, actor_id)

    def delete_cost_item(self, cost_item_id: UUID, actor_id: UUID) -> MutationResult:
        """
        Remove a cost item, then reconcile its project.

        Rows with an unknown category or status can always be removed;
        ``record`` is None for them.
        """
        item_key = str(cost_item_id)
        with LogContext.bind(cost_item_id=item_key, actor_id=str(actor_id)):
            try:
                model = self.session.get(CostItemModel, cost_item_id)
                if model is None:
                    raise CostItemNotFoundError(item_key)
                project_id = model.project_id
                amount = model.amount
                record = self._record_or_none(model)
                self.session.delete(model)
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise StorageError("delete_cost_item", str(exc)) from exc

            logger.info(
                "cost_item_deleted",
                extra={"project_id": str(project_id), "amount": amount},
            )
            return self._reconcile_after_write(project_id, cost_item_id, record, actor_id)

    def _parse_changes(self, changes: dict[str, Any], item_key: str) -> dict[str, Any]:
        """Validate changes and convert them to their stored representation."""
        values: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "amount":
                values[name] = validate_amount(value, item_key)
            elif name == "category":
                values[name] = parse_category(value, item_key).value
            elif name == "status":
                values[name] = parse_status(value, item_key).value
            elif name == "source":
                values[name] = parse_source(value).value
            elif name == "description":
                values[name] = value or ""
            elif name == "item_date":
                if not isinstance(value, date):
                    raise InvalidDataError(f"item_date must be a date, got {value!r}")
                values[name] = value
            else:
                values[name] = value
        return values

    @staticmethod
    def _record_or_none(model: CostItemModel) -> CostItemRecord | None:
        """The row as a record, or None when its category or status is invalid."""
        try:
            return model.to_dto()
        except InvalidDataError as exc:
            logger.warning(
                "invalid_cost_item_row",
                extra={
                    "project_id": str(model.project_id),
                    "category": model.category,
                    "status": model.status,
                    "error_code": exc.code,
                },
            )
            return None

    @staticmethod
    def _warn_on_status_regression(old: str, new: str, item_key: str) -> None:
        try:
            old_status = parse_status(old, item_key)
        except UnknownStatusError:
            # Stored status outside the closed set; nothing to compare with.
            return
        new_status = parse_status(new, item_key)
        if not is_forward_transition(old_status, new_status):
            logger.warning(
                "cost_item_status_regressed",
                extra={"from_status": old_status.value, "to_status": new_status.value},
            )

    def _reconcile_after_write(
        self,
        project_id: UUID,
        cost_item_id: UUID,
        record: CostItemRecord | None,
        actor_id: UUID,
    ) -> MutationResult:
        try:
            result = self._reconciler.reconcile(project_id, actor_id=actor_id)
        except CostControlError as exc:
            logger.warning(
                "reconciliation_failed_after_write",
                extra={
                    "project_id": str(project_id),
                    "cost_item_id": str(cost_item_id),
                    "error_code": exc.code,
                    "error": str(exc),
                },
            )
            return MutationResult(record=record, reconciliation_error=exc)
        return MutationResult(record=record, reconciliation=result)
