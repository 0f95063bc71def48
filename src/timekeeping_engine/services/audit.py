"""Audit sink used by the workflow-level services."""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from timekeeping_engine.config import get_settings
from timekeeping_engine.models import AuditEvent


def _to_json(data: Any) -> Any:
    """Make dates, UUIDs and enums JSON-safe."""
    if data is None:
        return None
    return json.loads(json.dumps(data, sort_keys=True, default=str))


async def record_audit(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: UUID,
    actor_id: UUID | None = None,
    before: Any = None,
    after: Any = None,
) -> AuditEvent:
    """Append an audit event in the caller's transaction.

    Dict ``after`` payloads are stamped with the engine version.
    """
    if isinstance(after, dict):
        after = {**after, "engine_version": get_settings().engine_version}
    event = AuditEvent(
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        before_json=_to_json(before),
        after_json=_to_json(after),
    )
    session.add(event)
    return event
