"""Base repository class shared by model repositories."""

from typing import Generic, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from ingestor.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Binds a model to the session of the current unit of work.

    Queries are model specific (the ingestor only reads its cursor and
    inserts-if-absent), so they live on the concrete repositories.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session
