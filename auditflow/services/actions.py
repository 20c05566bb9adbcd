"""
Corrective action drafts for failed checklist items.

The factory only decides *which* actions an audit completion produces and
what they look like. Persisting them, and enforcing at-most-once creation
across concurrent completions, is the job of the storage layer.
"""
import logging
from datetime import date, timedelta
from typing import Iterable, List, Mapping, Optional

from auditflow.errors import InvariantViolation, ValidationError
from auditflow.models.enums import ActionStatus, Urgency
from auditflow.models.snapshots import (
    ActionDraft,
    AuditContext,
    ItemNode,
    ResultEntry
)

logger = logging.getLogger(__name__)


def action_deadline(completed_on: date, deadline_days: int) -> date:
    return completed_on + timedelta(days=deadline_days)


def _description(item: ItemNode, entry: Optional[ResultEntry], audit: AuditContext) -> str:
    if entry is not None and entry.comment:
        return entry.comment
    return f"'{item.title}' failed during the audit on {audit.audit_date.isoformat()}"


def create_actions_for_failures(
    audit: AuditContext,
    failed_items: Iterable[ItemNode],
    results: Optional[Mapping[int, ResultEntry]] = None,
    existing_item_ids: Iterable[int] = ()
) -> List[ActionDraft]:
    """
    One pending action per failed item that asks for one.

    Items listed in existing_item_ids already have an action for this audit
    and are skipped, so re-running completion produces nothing new.
    """
    results = results or {}
    seen = set(existing_item_ids)
    drafts: List[ActionDraft] = []

    for item in failed_items:
        if item.id in seen:
            logger.debug("Audit %s: action for item %s already exists", audit.id, item.id)
            continue
        seen.add(item.id)

        entry = results.get(item.id)
        drafts.append(ActionDraft(
            template_item_id=item.id,
            audit_id=audit.id,
            organization_id=audit.organization_id,
            location_id=audit.location_id,
            title=item.title,
            description=_description(item, entry, audit),
            urgency=item.action_urgency,
            deadline=action_deadline(audit.completed_at, item.action_deadline_days),
            assigned_to_id=audit.assignee_id,
            created_by_id=audit.created_by_id,
            requires_photo=item.requires_photo,
            requires_comment=item.requires_comment_on_fail,
            photo_urls=list(entry.photo_urls) if entry is not None else []
        ))

    if drafts:
        logger.info("Audit %s: %d corrective action(s) drafted", audit.id, len(drafts))
    return drafts


def create_manual_action(
    organization_id: str,
    location_id: int,
    title: str,
    urgency: Urgency = Urgency.MEDIUM,
    deadline: Optional[date] = None,
    description: Optional[str] = None,
    audit_id: Optional[int] = None,
    assigned_to_id: Optional[str] = None,
    created_by_id: Optional[str] = None,
    today: Optional[date] = None
) -> ActionDraft:
    """Draft an action raised by hand rather than by a failed item."""
    title = (title or "").strip()
    if not title:
        raise ValidationError("Action title is required", entity_type="Action", field="title")
    if deadline is not None and today is not None and deadline < today:
        raise ValidationError(
            f"Action deadline {deadline.isoformat()} is in the past",
            entity_type="Action",
            field="deadline"
        )
    return ActionDraft(
        audit_id=audit_id,
        organization_id=organization_id,
        location_id=location_id,
        title=title,
        description=description,
        urgency=urgency,
        deadline=deadline,
        assigned_to_id=assigned_to_id,
        created_by_id=created_by_id
    )


# Allowed status moves. Rejected is terminal: nothing reopens a rejected action.
ACTION_TRANSITIONS = {
    ActionStatus.PENDING: (ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED),
    ActionStatus.IN_PROGRESS: (ActionStatus.COMPLETED,),
    ActionStatus.COMPLETED: (ActionStatus.VERIFIED, ActionStatus.REJECTED),
    ActionStatus.VERIFIED: (),
    ActionStatus.REJECTED: (),
}


def check_action_transition(action_id, current: ActionStatus, target: ActionStatus) -> None:
    """Raise InvariantViolation unless current -> target is an allowed move."""
    if target not in ACTION_TRANSITIONS[current]:
        raise InvariantViolation(
            f"Action cannot move from {current.value} to {target.value}",
            entity_type="Action",
            entity_id=action_id
        )
