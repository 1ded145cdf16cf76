"""
Guarded state transitions.

Every lifecycle change goes through ``apply_transition``: a single conditional
UPDATE whose WHERE clause carries the expected source states, so the state
predicate is evaluated by the database at write time rather than against an
earlier read. When no row matches, the row is re-read to tell NOT_FOUND
from CONFLICT.

The audit event is added to the same session; callers wrap the call in
``unit_of_work`` so the status write and the event commit or roll back
together.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tcgmarket.core.exceptions import InvalidStateError, NotFoundError
from tcgmarket.core.prometheus_metrics import state_transitions_total

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


@dataclass(frozen=True)
class Transition:
    """A named edge of an entity's state machine."""

    entity: str
    name: str
    sources: Tuple[enum.Enum, ...]
    target: enum.Enum

    @property
    def source_values(self) -> Tuple[str, ...]:
        return tuple(state.value for state in self.sources)

    def allows(self, status: str) -> bool:
        return status in self.source_values


async def apply_transition(
    session: AsyncSession,
    model: Type[ModelT],
    entity_id: str,
    transition: Transition,
    *,
    values: Optional[Dict[str, Any]] = None,
    event: Optional[Callable[[ModelT], Any]] = None,
    where: Sequence[Any] = (),
    blocked: Optional[Callable[[], Exception]] = None,
) -> ModelT:
    """
    Move one entity along ``transition`` if its persisted status still allows it.

    Args:
        session: Session inside the caller's unit of work
        model: Mapped class with ``id`` and ``status`` columns
        entity_id: Primary key of the row to transition
        transition: Allowed source states and the target state
        values: Extra columns written by the same UPDATE (timestamps, actor ids)
        event: Factory building the audit event from the refreshed entity
        where: Extra predicates the row must also satisfy at write time
        blocked: Error raised when the row is in a source state but fails ``where``

    Returns:
        The entity as it is after the update

    Raises:
        NotFoundError: If the row does not exist
        InvalidStateError: If the row exists but is not in a source state
        Exception: Whatever ``blocked`` builds, if only an extra predicate failed
    """
    stmt = (
        update(model)
        .where(model.id == entity_id, model.status.in_(transition.source_values), *where)
        .values(status=transition.target.value, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)

    if result.rowcount == 0:
        current = (
            await session.execute(select(model.status).where(model.id == entity_id))
        ).scalar_one_or_none()
        if current is None:
            state_transitions_total.labels(
                entity=transition.entity, transition=transition.name, outcome="not_found"
            ).inc()
            raise NotFoundError(transition.entity, entity_id)

        if blocked is not None and transition.allows(current):
            state_transitions_total.labels(
                entity=transition.entity, transition=transition.name, outcome="blocked"
            ).inc()
            raise blocked()

        state_transitions_total.labels(
            entity=transition.entity, transition=transition.name, outcome="conflict"
        ).inc()
        logger.info(
            f"{transition.entity} {entity_id}: {transition.name} rejected, status is {current}",
            extra={"transition": transition.name, "current_status": current},
        )
        raise InvalidStateError(transition.entity, entity_id, current, transition.name)

    entity = (
        await session.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()

    if event is not None:
        session.add(event(entity))
    await session.flush()

    state_transitions_total.labels(
        entity=transition.entity, transition=transition.name, outcome="applied"
    ).inc()
    logger.info(
        f"{transition.entity} {entity_id}: {transition.name} -> {transition.target.value}",
        extra={"transition": transition.name, "target_status": transition.target.value},
    )
    return entity
