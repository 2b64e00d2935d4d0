"""Postgres-backed budget allocation repository using SQLAlchemy."""

from __future__ import annotations

from sqlalchemy.dialects.postgresql import insert

from coursegen.budget.models import BudgetAllocation
from coursegen.core.database import require_session_factory
from coursegen.schema.generation import BudgetAllocationRow
from coursegen.storage.budget_repo import BudgetAllocationRepository
from coursegen.utils.db_retry import execute_with_retry


class PostgresBudgetAllocationRepository(BudgetAllocationRepository):
  """Persist the latest allocation per course."""

  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def save_allocation(self, allocation: BudgetAllocation) -> None:
    values = allocation.to_dict()
    stmt = insert(BudgetAllocationRow).values(**values)
    stmt = stmt.on_conflict_do_update(index_elements=[BudgetAllocationRow.course_id], set_={key: value for key, value in values.items() if key != "course_id"})

    async def _save() -> None:
      async with self._session_factory() as session:
        await session.execute(stmt)
        await session.commit()

    await execute_with_retry(operation_name="budget_allocations.save", func=_save)
