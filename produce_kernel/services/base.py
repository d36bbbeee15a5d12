"""
BaseService -- common constructor for the stateful ledger components.

Responsibility:
    Holds the caller's SQLAlchemy ``Session`` and the injected ``Clock``.
    Concrete services persist with ``session.flush()`` and never commit.

Architecture position:
    Kernel > Services -- imperative shell.  Every component that writes
    lots, matches, ledger entries, aggregate rows, adjustments, audits or
    closings extends this class.

Invariants enforced:
    - Transaction boundaries belong to the caller (the facade or a test
      harness).  A service never calls ``commit()`` or ``rollback()``, so a
      reverse-old/apply-new pair or a whole audit finalize lands in one
      unit of work.
"""

from abc import ABC

from sqlalchemy.orm import Session

from produce_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a ``Session`` from the caller and flushes within its active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle.
        - Does NOT provide read views; those live in
          ``produce_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
