"""Compare-and-swap helper for per-row state transitions.

A transition is written as ``UPDATE … WHERE id = :id AND version = :seen
AND <preconditions>``; if no row matches, another writer got there first and
the caller receives :class:`ConflictError` instead of silently overwriting.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from timekeeper.common.exceptions import ConflictError

logger = logging.getLogger(__name__)


async def compare_and_swap(
    db: AsyncSession,
    instance: Any,
    *,
    expected: Mapping[str, Any],
    values: Mapping[str, Any],
    entity_type: str,
) -> None:
    """Apply *values* to *instance*'s row only if it still matches *expected*.

    The observed ``version`` of *instance* is always part of the condition and
    is incremented by the write. On success *instance* is refreshed from the
    database.
    """
    model = type(instance)
    observed_version = instance.version

    conditions = [model.id == instance.id, model.version == observed_version]
    for column, value in expected.items():
        attr = getattr(model, column)
        conditions.append(attr.is_(None) if value is None else attr == value)

    new_values = dict(values)
    new_values["version"] = observed_version + 1
    if hasattr(model, "updated_at"):
        new_values.setdefault("updated_at", datetime.now(timezone.utc))

    stmt = (
        update(model)
        .where(*conditions)
        .values(**new_values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        logger.warning(
            "CAS lost on %s %s (expected version %s)",
            entity_type, instance.id, observed_version,
        )
        raise ConflictError(entity_type, instance.id)

    await db.refresh(instance)
