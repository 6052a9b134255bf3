from typing import Generic, TypeVar, Optional, List, Type

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from pydantic import BaseModel

from common.core.telemetry import trace_span

EntityType = TypeVar("EntityType")
DomainModelType = TypeVar("DomainModelType")
CreateModelType = TypeVar("CreateModelType", bound=BaseModel)
UpdateModelType = TypeVar("UpdateModelType", bound=BaseModel)


class BaseRepository(Generic[EntityType, DomainModelType]):
    """
    Base repository bound to one explicit session.

    The session belongs to the caller (a request via ``get_db`` or a job via
    ``transaction()``), so two repositories built on the same session see
    each other's uncommitted writes and commit together.

    Example:
        repo = SubscriptionRepository(db_session)
        sub = await repo.get(123)
    """

    def __init__(
        self,
        entity_class: Type[EntityType],
        domain_class: Type[DomainModelType],
        db_session: AsyncSession,
    ):
        self.entity_class = entity_class
        self.domain_class = domain_class
        self.db_session = db_session

    def _entity_to_domain(self, entity: EntityType) -> DomainModelType:
        """Convert database entity to domain model."""
        return self.domain_class.model_validate(entity)

    def _entities_to_domain(self, entities: List[EntityType]) -> List[DomainModelType]:
        """Convert list of database entities to domain models."""
        return [self._entity_to_domain(entity) for entity in entities]

    @trace_span
    async def get(self, id: int) -> Optional[DomainModelType]:
        result = await self.db_session.execute(
            select(self.entity_class).where(self.entity_class.id == id)
        )
        entity = result.scalar_one_or_none()
        return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def get_multi(self, skip: int = 0, limit: int = 100) -> List[DomainModelType]:
        result = await self.db_session.execute(
            select(self.entity_class)
            .order_by(self.entity_class.id)
            .offset(skip)
            .limit(limit)
        )
        return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def create(self, create_model: CreateModelType) -> DomainModelType:
        """Create a new entity from a typed create model."""
        data = create_model.model_dump(exclude_none=True)
        db_obj = self.entity_class(**data)
        self.db_session.add(db_obj)
        await self.db_session.flush()
        await self.db_session.refresh(db_obj)
        return self._entity_to_domain(db_obj)

    @trace_span
    async def update(
        self, id: int, update_model: UpdateModelType
    ) -> Optional[DomainModelType]:
        """Update an entity with a typed update model. Only set fields are written."""
        data = update_model.model_dump(exclude_unset=True)
        if not data:
            return await self.get(id)

        await self.db_session.execute(
            update(self.entity_class)
            .where(self.entity_class.id == id)
            .values(data)
        )
        await self.db_session.flush()
        return await self._refresh_and_get(id)

    async def _refresh_and_get(self, id: int) -> Optional[DomainModelType]:
        # Reload so server-side values (updated_at) are current
        entity = await self.db_session.get(self.entity_class, id)
        if entity is None:
            return None
        await self.db_session.refresh(entity)
        return self._entity_to_domain(entity)
