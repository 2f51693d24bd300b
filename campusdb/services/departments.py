"""
Department operations.

Departments are the entity the concurrency token was designed for: a
budget edit made against a stale read must be rejected, not applied.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any

from ..errors import ValidationError
from ..models import DEPARTMENT_SEQUENCE, DEPARTMENTS, Department
from .base import UNSET, EntityService, require_text

logger = logging.getLogger(__name__)


def _check_budget(budget: Decimal) -> Decimal:
    budget = Decimal(budget)
    if budget < 0:
        raise ValidationError("Budget cannot be negative", "budget")
    return budget


class DepartmentService(EntityService):
    collection = DEPARTMENTS
    id_field = "departmentId"
    entity = "Department"

    async def create(
        self,
        name: str,
        budget: Decimal,
        start_date: date,
        instructor_id: int | None = None,
    ) -> Department:
        """Allocate an id and insert a department with its first token.

        Raises:
            NotFoundError: If the administrator does not exist
        """
        name = require_text(name, "name", min_length=3)
        budget = _check_budget(budget)
        administrator_name = await self.synchronizer.administrator_name_for(instructor_id)

        department = Department(
            department_id=await self.sequences.allocate(DEPARTMENT_SEQUENCE),
            name=name,
            budget=budget,
            start_date=start_date,
            instructor_id=instructor_id,
            administrator_name=administrator_name,
            concurrency_token=self.tokens.issue_token(),
        )
        department.doc_id = await self.store.insert_one(DEPARTMENTS, department.to_document())
        logger.info("Department created", extra={"department_id": department.department_id})
        return department

    async def get(self, department_id: int) -> Department:
        return Department.from_document(await self._get_document(department_id))

    async def list(self) -> list[Department]:
        docs = await self.store.find(DEPARTMENTS, sort="departmentId")
        return [Department.from_document(doc) for doc in docs]

    async def update(
        self,
        department_id: int,
        *,
        name: str | None = None,
        budget: Decimal | None = None,
        start_date: date | None = None,
        instructor_id: Any = UNSET,
        token: bytes | None = None,
    ) -> Department:
        """Apply changes if the caller's token is still current.

        Passing instructor_id=None removes the administrator.

        Raises:
            NotFoundError: If the department or administrator does not exist
            ConflictError: If the supplied token is stale; nothing is changed
        """
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = require_text(name, "name", min_length=3)
        if budget is not None:
            changes["budget"] = str(_check_budget(budget))
        if start_date is not None:
            changes["startDate"] = start_date.isoformat()
        if instructor_id is not UNSET:
            changes["instructorId"] = instructor_id
            changes["administratorName"] = await self.synchronizer.administrator_name_for(
                instructor_id
            )

        department = Department.from_document(await self._update(department_id, token, changes))
        logger.info("Department updated", extra={"department_id": department_id})
        return department

    async def assign_administrator(
        self, department_id: int, instructor_id: int | None
    ) -> Department:
        """Set or clear the administrator without a token check."""
        await self.synchronizer.set_department_administrator(department_id, instructor_id)
        return await self.get(department_id)

    async def can_delete(self, department_id: int) -> bool:
        return await self.cascades.can_delete_department(department_id)

    async def delete(self, department_id: int, token: bytes | None = None) -> None:
        """Delete a department no course references."""
        await self.cascades.delete_department(department_id, token)
