"""
BaseService -- abstract base for kernel services.

Services receive a SQLAlchemy ``Session`` from the caller and persist
with ``session.flush()`` -- never ``session.commit()``.  The caller owns
the transaction, which is what lets the import engine commit a page's
order writes together with the job checkpoint.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from storefront_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
