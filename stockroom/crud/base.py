"""
Base CRUD operations and the unit-of-work wrapper.
SQLAlchemy 2.x only: select(), update(), delete().
"""
from contextlib import contextmanager
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import Session
import logging
from typing import TypeVar, Generic, Type, Optional, List, Iterator

from stockroom.database import Base
from stockroom.exceptions import StockroomError, ConflictError, InfrastructureError

logger = logging.getLogger(__name__)
ModelType = TypeVar("ModelType", bound=Base)


@contextmanager
def unit_of_work(db: Session, failure_message: str, integrity_message: Optional[str] = None) -> Iterator[Session]:
    """
    Run the block as one database transaction: commit on success, roll back
    on any error.
    Domain errors propagate unchanged. An IntegrityError becomes a
    ConflictError when integrity_message is given; every other store failure
    becomes an InfrastructureError carrying failure_message.
    """
    try:
        yield db
        db.commit()
    except StockroomError:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        if integrity_message is None:
            logger.error(f"{failure_message}: {e}")
            raise InfrastructureError(failure_message) from e
        logger.warning(f"{integrity_message}: {e.orig}")
        raise ConflictError(integrity_message) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{failure_message}: {e}")
        raise InfrastructureError(failure_message) from e


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    def get(self, db: Session, id: int) -> Optional[ModelType]:
        """Get record by ID"""
        try:
            stmt = select(self.model).where(self.model.id == id)
            return db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model.__name__} {id}: {e}")
            raise InfrastructureError(f"Failed to fetch {self.model.__name__.lower()}") from e

    def get_multi(self, db: Session, *, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """Get multiple records, newest first"""
        try:
            stmt = (
                select(self.model)
                .order_by(self.model.id.desc())
                .offset(skip)
                .limit(limit)
            )
            return list(db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting multiple {self.model.__name__}: {e}")
            raise InfrastructureError(f"Failed to fetch {self.model.__tablename__}") from e

    def remove(self, db: Session, *, id: int) -> Optional[ModelType]:
        """Delete record, returning the deleted object (None if absent)"""
        with unit_of_work(db, f"Failed to delete {self.model.__name__.lower()}"):
            obj = db.execute(select(self.model).where(self.model.id == id)).scalar_one_or_none()
            if obj is None:
                return None
            db.delete(obj)
        return obj
