"""
Module: costcontrol_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, domain/
    and models/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but MUST
      NOT call session.add(), session.delete(), session.commit(), or
      session.flush().
    - DTO return convention: selectors return frozen dataclasses, NOT raw
      ORM model instances.
    - Session ownership: the caller owns the session and its transaction
      scope.  Reading inside the reconciliation transaction is what gives
      the rollup its consistent view.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Non-goals:
        - BaseSelector does NOT define any query methods; subclasses
          implement the ledger and budget queries.
    """

    def __init__(self, session: Session):
        self.session = session
