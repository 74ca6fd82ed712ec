"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers per named sequence.  Invoice
    numbering uses one sequence per tenant per month
    (``invoice:{tenant_id}:{YYYYMM}``).  A dedicated counter table with
    row-level locking (``SELECT ... FOR UPDATE``) guarantees that concurrent
    invoice creation for the same tenant and month never mints the same
    number twice.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ``billing_modules.invoicing.numbering``.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next value.
      An optional ``seed`` callable is consulted exactly once, when the
      counter row is first created, so that numbering continues after
      numbers minted before the counter existed.
    - Transactional: an increment becomes visible only when the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from typing import Callable

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly increasing
        integer value.  Does NOT call ``session.commit()`` -- the caller
        controls transaction boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(
        self,
        sequence_name: str,
        seed: Callable[[], int] | None = None,
    ) -> int:
        """
        Get the next value for a named sequence.

        1. Locks the sequence row (or creates it if it does not exist,
           starting from ``seed()`` when given, else 0)
        2. Increments the counter
        3. Returns the new value

        Args:
            sequence_name: Name of the sequence.
            seed: Called once on first use; returns the highest value already
                in use outside the counter.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            start = seed() if seed is not None else 0
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=start + 1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": start + 1, "seeded_from": start},
                )
                return start + 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None if unused."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        WARNING: tests and data migrations only.
        """
        counter = self._locked_counter(sequence_name)
        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()
