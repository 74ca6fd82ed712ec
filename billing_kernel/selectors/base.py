"""
Module: billing_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the read side of the entity store, answering typed filter queries
    without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/base.py.
    Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(), delete(),
      commit(), or flush().
    - DTO return convention: selectors return frozen dataclasses, NOT ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from billing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  Subclasses implement the entity-specific queries.
    """

    def __init__(self, session: Session):
        self.session = session
