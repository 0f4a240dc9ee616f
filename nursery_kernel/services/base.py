"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract for every write-side
    service.  Services receive a SQLAlchemy ``Session`` and persist through
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    Transaction boundaries belong to the caller.  A unit status write and
    its ledger event are flushed together and committed (or rolled back)
    together by whoever opened the transaction.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the guarantee that a
      failed transition never leaves a half-written event.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from nursery_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage commit/rollback.
        - Does NOT provide read-only queries; those live in
          ``nursery_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
