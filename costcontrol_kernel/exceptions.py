"""
Typed Exception Hierarchy for the Cost Control Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the reconciliation engine must react differently to different
failures: a missing project is a caller bug, malformed ledger data needs
a human, a storage hiccup or a lost race should simply be retried.
Parsing message strings to tell them apart is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        reconciler.reconcile(project_id)
    except ConcurrencyConflictError as e:
        schedule_retry(e.entity_id)
    except StorageError as e:
        api_response(code=e.code, warning="totals may be out of date")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from CostControlError:

    CostControlError (base)
    |
    +-- NotFoundError
    |   +-- ProjectNotFoundError
    |   +-- CostItemNotFoundError
    |
    +-- InvalidDataError
    |   +-- NegativeAmountError
    |   +-- UnknownCategoryError
    |   +-- UnknownStatusError
    |   +-- ImmutableFieldError
    |   +-- InvalidBudgetError
    |
    +-- StorageError
    |   +-- ReconciliationTimeoutError
    |
    +-- ConcurrencyError
        +-- ConcurrencyConflictError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Not found    | PROJECT_NOT_FOUND        | Project ID doesn't exist
             | COST_ITEM_NOT_FOUND      | Cost item ID doesn't exist
-------------|--------------------------|------------------------------------------
Invalid data | NEGATIVE_AMOUNT          | Cost item amount < 0
             | UNKNOWN_CATEGORY         | Category outside the closed set
             | UNKNOWN_STATUS           | Status not planned/committed/paid
             | IMMUTABLE_FIELD          | Attempt to move an item to another project
             | INVALID_BUDGET           | Negative or non-numeric budget figure
-------------|--------------------------|------------------------------------------
Storage      | STORAGE_ERROR            | Read/write failure against any store
             | RECONCILIATION_TIMEOUT   | Caller deadline exceeded, nothing written
-------------|--------------------------|------------------------------------------
Concurrency  | CONCURRENCY_CONFLICT     | Lost the compare-and-swap on the project row

===============================================================================
PROPAGATION
===============================================================================

The calculators in ``costcontrol_engines`` raise InvalidDataError only.
Services are the sole translators of SQLAlchemy failures into
StorageError / ConcurrencyConflictError, and ReconciliationService is the
sole place that retries on ConcurrencyConflictError.
"""


class CostControlError(Exception):
    """
    Base exception for all cost control kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COST_CONTROL_ERROR"


# Not-found exceptions


class NotFoundError(CostControlError):
    """Base exception for missing referenced records."""

    code: str = "NOT_FOUND"


class ProjectNotFoundError(NotFoundError):
    """Project with given ID was not found."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class CostItemNotFoundError(NotFoundError):
    """Cost item with given ID was not found."""

    code: str = "COST_ITEM_NOT_FOUND"

    def __init__(self, cost_item_id: str):
        self.cost_item_id = cost_item_id
        super().__init__(f"Cost item not found: {cost_item_id}")


# Invalid-data exceptions


class InvalidDataError(CostControlError):
    """Base exception for malformed or out-of-domain ledger data."""

    code: str = "INVALID_DATA"


class NegativeAmountError(InvalidDataError):
    """
    A cost item carries a negative amount.

    Raised both on write (validation) and on rollup when a stored row is
    found with a negative amount.  The rollup never clamps or skips it.
    """

    code: str = "NEGATIVE_AMOUNT"

    def __init__(self, amount: str, cost_item_id: str | None = None):
        self.amount = amount
        self.cost_item_id = cost_item_id
        where = f" on cost item {cost_item_id}" if cost_item_id else ""
        super().__init__(f"Negative amount {amount}{where}")


class UnknownCategoryError(InvalidDataError):
    """Category is not one of the closed set of cost categories."""

    code: str = "UNKNOWN_CATEGORY"

    def __init__(self, category: str, cost_item_id: str | None = None):
        self.category = category
        self.cost_item_id = cost_item_id
        super().__init__(f"Unknown cost category: {category!r}")


class UnknownStatusError(InvalidDataError):
    """Status is not one of planned / committed / paid."""

    code: str = "UNKNOWN_STATUS"

    def __init__(self, status: str, cost_item_id: str | None = None):
        self.status = status
        self.cost_item_id = cost_item_id
        super().__init__(f"Unknown cost item status: {status!r}")


class ImmutableFieldError(InvalidDataError):
    """Attempt to change a field that is fixed after creation."""

    code: str = "IMMUTABLE_FIELD"

    def __init__(self, entity_type: str, field_name: str):
        self.entity_type = entity_type
        self.field_name = field_name
        super().__init__(f"{entity_type}.{field_name} cannot be changed after creation")


class InvalidBudgetError(InvalidDataError):
    """Budget figure is negative or not a number."""

    code: str = "INVALID_BUDGET"

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid budget {value!r}: {reason}")


# Storage exceptions


class StorageError(CostControlError):
    """
    Read or write failure against the ledger, breakdown, or project store.

    Always raised with the underlying driver exception chained as
    ``__cause__``.  No partial writes are visible when this is raised by
    the reconciliation service.
    """

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage failure during {operation}: {reason}")


class ReconciliationTimeoutError(StorageError):
    """Reconciliation exceeded its caller-supplied deadline and was aborted."""

    code: str = "RECONCILIATION_TIMEOUT"

    def __init__(self, project_id: str, timeout_seconds: float):
        self.project_id = project_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            "reconcile",
            f"project {project_id} exceeded timeout of {timeout_seconds}s",
        )


# Concurrency exceptions


class ConcurrencyError(CostControlError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    Optimistic concurrency conflict during the atomic persist step.

    The caller should retry reconciliation from scratch.  ``attempts`` is
    set when the reconciliation service surfaces the conflict after
    exhausting its own bounded retries.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        suffix = f" after {attempts} attempt(s)" if attempts else ""
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id}: "
            f"modified by another transaction{suffix}"
        )
