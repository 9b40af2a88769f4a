"""
Base Data Access Object (DAO) class.

WHY: The DAO pattern separates database operations from business logic,
making the workflow engine testable without a real database and keeping
tenant scoping enforced in one place.
"""

from typing import Generic, TypeVar, Type, Optional, List, Any, Dict, Sequence
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_engine.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """
    Base Data Access Object providing CRUD operations for all models.

    WHY: Centralizing database operations in DAOs separates data access
    concerns from business logic. Using generics allows type-safe reuse
    across different models.

    Type Parameters:
        ModelType: The SQLAlchemy model class this DAO manages
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize DAO with model class and database session.

        Args:
            model: The SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            The created model instance with database-generated fields populated

        Raises:
            IntegrityError: If unique constraints are violated
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()  # Flush to get auto-generated fields
        await self.session.refresh(instance)
        return instance

    async def create_many(self, rows: Sequence[Dict[str, Any]]) -> List[ModelType]:
        """
        Create several records in one flush.

        WHY: Activating an approval level must create every approver's row
        or none of them. A single flush inside the caller's transaction
        gives that all-or-nothing behaviour.

        Args:
            rows: Field values, one dict per record

        Returns:
            Created instances in input order
        """
        instances = [self.model(**row) for row in rows]
        self.session.add_all(instances)
        await self.session.flush()
        for instance in instances:
            await self.session.refresh(instance)
        return instances

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        Retrieve a single record by primary key.

        Args:
            id: Primary key value

        Returns:
            The model instance if found, None otherwise
        """
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def update(self, id: int, **kwargs: Any) -> Optional[ModelType]:
        """
        Update an existing record.

        Args:
            id: Primary key of the record to update
            **kwargs: Fields to update

        Returns:
            Updated model instance if found, None otherwise
        """
        instance = await self.get_by_id(id)
        if instance is None:
            return None

        for field, value in kwargs.items():
            setattr(instance, field, value)

        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def update_where(
        self,
        id: int,
        expected: Dict[str, Any],
        **values: Any,
    ) -> bool:
        """
        Conditionally update a record (compare-and-swap).

        WHAT: Applies ``values`` only if every column in ``expected`` still
        holds the expected value. ``None`` in ``expected`` means IS NULL.

        WHY: Two approvers finishing the same level, or two signers
        finishing the last signatures, race on the same row. Only the
        writer whose precondition still holds may perform the transition;
        the loser sees False and does nothing.

        Args:
            id: Primary key of the record to update
            expected: Column name to expected current value
            **values: Columns to set

        Returns:
            True if exactly one row was updated
        """
        # Pending changes must reach the database before the refresh below
        await self.session.flush()

        conditions = [self.model.id == id]
        for field, value in expected.items():
            column = getattr(self.model, field)
            conditions.append(column.is_(None) if value is None else column == value)

        result = await self.session.execute(
            update(self.model)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        # WHY: synchronize_session=False leaves any loaded instance stale
        instance = await self.session.get(self.model, id)
        if instance is not None:
            await self.session.refresh(instance)
        return True

    async def count(self, **filters: Any) -> int:
        """
        Count records matching filters.

        Args:
            **filters: Field name to value filters

        Returns:
            Number of records matching the filters
        """
        query = select(func.count()).select_from(self.model)

        for field, value in filters.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)

        result = await self.session.execute(query)
        return int(result.scalar_one())

    async def exists(self, **filters: Any) -> bool:
        """
        Check if any records matching filters exist.

        Args:
            **filters: Field name to value filters

        Returns:
            True if at least one matching record exists
        """
        query = select(self.model.id)

        for field, value in filters.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)

        query = query.limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none() is not None

    async def get_by_id_and_org(self, id: int, org_id: int) -> Optional[ModelType]:
        """
        Retrieve a record by ID, ensuring it belongs to the specified organization.

        WHY: Prevents cross-tenant access. Always use this method instead of
        get_by_id for anything reachable from a request.

        Args:
            id: Primary key value
            org_id: Organization ID that must own the record

        Returns:
            The model instance if found and belongs to org, None otherwise
        """
        if not hasattr(self.model, "org_id"):
            raise AttributeError(
                f"{self.model.__name__} is not a multi-tenant model (no org_id field)"
            )

        result = await self.session.execute(
            select(self.model).where(
                self.model.id == id,
                self.model.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()
