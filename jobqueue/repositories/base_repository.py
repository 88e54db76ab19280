from typing import Generic, TypeVar, Type, List, Optional, Any, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from sqlalchemy.exc import SQLAlchemyError
from jobqueue.db import Base

ModelType = TypeVar("ModelType", bound=Base)


class AsyncBaseRepository(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    def _conditions(self, condition: Optional[Dict[str, Any]]):
        """
        Build WHERE clauses from {column: value}; list values become IN (...)
        """
        where_conditions = []
        for attr, value in (condition or {}).items():
            if not hasattr(self.model, attr):
                continue
            column = getattr(self.model, attr)
            if isinstance(value, (list, tuple, set)):
                where_conditions.append(column.in_(list(value)))
            else:
                where_conditions.append(column == value)
        return where_conditions

    async def create(self, db: AsyncSession, *, obj_in: Dict[str, Any]) -> ModelType:
        """
        Create a new record (flushed, not committed).
        """
        try:
            db_obj = self.model(**obj_in)
            db.add(db_obj)
            await db.flush()  # Get ID without committing transaction
            await db.refresh(db_obj)
            return db_obj
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def create_many(self, db: AsyncSession, *, objs_in: List[Dict[str, Any]]) -> List[ModelType]:
        try:
            db_objs = [self.model(**obj_in) for obj_in in objs_in]
            db.add_all(db_objs)
            await db.flush()
            for db_obj in db_objs:
                await db.refresh(db_obj)
            return db_objs
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def get(self, db: AsyncSession, id: Any, refresh: bool = False) -> Optional[ModelType]:
        """
        Get a record by id. refresh=True reloads it even if the session already holds it.
        """
        return await db.get(self.model, id, populate_existing=refresh)

    async def get_by_condition(
            self,
            db: AsyncSession,
            condition: Dict[str, Any],
            skip: int = 0,
            limit: Optional[int] = None
    ) -> List[ModelType]:
        """
        Get records matching all conditions, ordered by id.
        """
        stmt = select(self.model)

        where_conditions = self._conditions(condition)
        if where_conditions:
            stmt = stmt.where(and_(*where_conditions))

        stmt = stmt.order_by(self.model.id)
        if skip:
            stmt = stmt.offset(skip)
        if limit:
            stmt = stmt.limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def count(
            self,
            db: AsyncSession,
            condition: Optional[Dict[str, Any]] = None,
    ) -> int:
        stmt = select(func.count(self.model.id))

        where_conditions = self._conditions(condition)
        if where_conditions:
            stmt = stmt.where(and_(*where_conditions))

        result = await db.execute(stmt)
        return result.scalar() or 0
