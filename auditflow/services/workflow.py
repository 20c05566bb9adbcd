"""
Audit and corrective-action workflow.

All audit and action state transitions go through here. The service loads
rows, hands snapshots to the pure scoring/action code, writes the results back
and appends activity events.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auditflow.errors import InvariantViolation, ValidationError
from auditflow.models.activity import ActivityEventType, record_event
from auditflow.models.domain import (
    Action,
    Audit,
    AuditResult,
    Location,
    ScheduledAuditInstance,
    Template
)
from auditflow.models.enums import (
    ActionStatus,
    AuditStatus,
    InstanceStatus,
    ResultValue,
    TERMINAL_AUDIT_STATUSES
)
from auditflow.models.snapshots import ActionDraft, AuditContext
from auditflow.services.actions import check_action_transition, create_actions_for_failures
from auditflow.services.scoring import ScoreResult, compute_score, load_template, results_from_rows

logger = logging.getLogger(__name__)


class AuditWorkflow:
    """Enforces audit and action lifecycle rules."""

    def __init__(self, db: Session):
        self.db = db

    # Audits
    def start_audit(
        self,
        location: Location,
        template: Template,
        inspector_id: str,
        audit_date: Optional[date] = None
    ) -> Audit:
        """Open a new in-progress audit of a location against a template."""
        if not template.is_active:
            raise ValidationError(
                f"Template '{template.name}' is inactive",
                entity_type="Template",
                entity_id=template.id
            )
        now = datetime.utcnow()
        audit = Audit(
            organization_id=location.organization_id,
            location_id=location.id,
            template_id=template.id,
            inspector_id=inspector_id,
            audit_date=audit_date or now.date(),
            status=AuditStatus.IN_PROGRESS,
            started_at=now
        )
        self.db.add(audit)
        self.db.flush()
        record_event(
            self.db, ActivityEventType.AUDIT_STARTED, "Audit", audit.id,
            user_id=inspector_id,
            payload={"location_id": location.id, "template_id": template.id}
        )
        self.db.commit()
        self.db.refresh(audit)
        return audit

    def _ensure_open(self, audit: Audit) -> None:
        if audit.status in TERMINAL_AUDIT_STATUSES:
            raise InvariantViolation(
                f"Audit {audit.id} is {audit.status.value} and can no longer change",
                entity_type="Audit",
                entity_id=audit.id
            )

    def record_result(
        self,
        audit: Audit,
        template_item_id: int,
        result: ResultValue,
        comment: Optional[str] = None,
        photo_urls: Optional[List[str]] = None
    ) -> AuditResult:
        """
        Record (or overwrite) the result for one checklist item.

        Invariant: terminal audits are immutable.
        """
        self._ensure_open(audit)

        row = next((r for r in audit.results if r.template_item_id == template_item_id), None)
        if row is None:
            row = AuditResult(audit_id=audit.id, template_item_id=template_item_id)
            audit.results.append(row)
        row.result = result
        row.comment = comment
        row.photo_urls = list(photo_urls or [])

        if audit.status == AuditStatus.DRAFT:
            audit.status = AuditStatus.IN_PROGRESS
        self.db.commit()
        self.db.refresh(row)
        return row

    def score(self, audit: Audit) -> ScoreResult:
        """Score an audit's current results without changing anything."""
        return compute_score(load_template(audit.template), results_from_rows(audit.results))

    def complete_audit(
        self,
        audit: Audit,
        completed_at: Optional[datetime] = None
    ) -> List[Action]:
        """
        Score the audit, freeze it, and create corrective actions.

        Invariants:
        - An audit is completed at most once
        - At most one action per failed result (also backed by a unique constraint)
        - A schedule instance linked to the audit is marked completed
        """
        self._ensure_open(audit)

        scored = self.score(audit)
        completed_at = completed_at or datetime.utcnow()

        audit.total_score = scored.total_score
        audit.max_score = scored.max_score
        audit.pass_percentage = scored.pass_percentage
        audit.passed = scored.passed
        audit.status = AuditStatus.COMPLETED
        audit.completed_at = completed_at

        context = AuditContext(
            id=audit.id,
            organization_id=audit.organization_id,
            location_id=audit.location_id,
            audit_date=audit.audit_date,
            completed_at=completed_at.date(),
            assignee_id=audit.location.manager_id if audit.location else None,
            created_by_id=audit.inspector_id
        )
        results = results_from_rows(audit.results)
        drafts = create_actions_for_failures(
            context,
            scored.failed_items_needing_action,
            results=results,
            existing_item_ids=[a.template_item_id for a in audit.actions if a.template_item_id]
        )

        result_ids = {row.template_item_id: row.id for row in audit.results}
        try:
            actions = [self._add_action(draft, result_ids.get(draft.template_item_id)) for draft in drafts]

            for instance in self.db.query(ScheduledAuditInstance).filter(
                ScheduledAuditInstance.audit_id == audit.id
            ).all():
                instance.status = InstanceStatus.COMPLETED
                instance.completed_at = completed_at
                record_event(
                    self.db, ActivityEventType.INSTANCE_COMPLETED, "ScheduledAuditInstance", instance.id,
                    payload={"audit_id": audit.id}
                )

            record_event(
                self.db, ActivityEventType.AUDIT_COMPLETED, "Audit", audit.id,
                user_id=audit.inspector_id,
                payload={
                    "pass_percentage": scored.pass_percentage,
                    "passed": scored.passed,
                    "actions_created": len(actions),
                    "missing_item_ids": scored.missing_item_ids,
                }
            )
            self.db.commit()
        except IntegrityError as exc:
            # Action flushes hit the unique constraint before commit does
            self.db.rollback()
            logger.warning("Audit %s: concurrent completion detected: %s", audit.id, exc)
            raise InvariantViolation(
                f"Audit {audit.id} was completed concurrently",
                entity_type="Audit",
                entity_id=audit.id
            ) from exc

        logger.info(
            "Audit %s completed: %s%% (%s), %d action(s)",
            audit.id, scored.pass_percentage, "passed" if scored.passed else "failed", len(actions)
        )
        for action in actions:
            self.db.refresh(action)
        return actions

    def cancel_audit(self, audit: Audit, user_id: Optional[str] = None) -> None:
        """
        Cancel an open audit. A schedule instance it was started from goes back
        to pending so it can still be picked up or marked missed.
        """
        self._ensure_open(audit)
        audit.status = AuditStatus.CANCELLED

        for instance in self.db.query(ScheduledAuditInstance).filter(
            ScheduledAuditInstance.audit_id == audit.id
        ).all():
            instance.audit_id = None
            instance.status = InstanceStatus.PENDING

        record_event(self.db, ActivityEventType.AUDIT_CANCELLED, "Audit", audit.id, user_id=user_id)
        self.db.commit()

    # Actions
    def _add_action(self, draft: ActionDraft, audit_result_id: Optional[int] = None) -> Action:
        action = Action(**draft.model_dump(), audit_result_id=audit_result_id)
        self.db.add(action)
        self.db.flush()
        record_event(
            self.db, ActivityEventType.ACTION_CREATED, "Action", action.id,
            user_id=draft.created_by_id,
            payload={
                "audit_id": draft.audit_id,
                "template_item_id": draft.template_item_id,
                "urgency": draft.urgency.value,
                "deadline": draft.deadline.isoformat() if draft.deadline else None,
            }
        )
        return action

    def create_action(self, draft: ActionDraft) -> Action:
        """Persist a manually raised action."""
        action = self._add_action(draft)
        self.db.commit()
        self.db.refresh(action)
        return action

    def start_action(self, action: Action) -> None:
        check_action_transition(action.id, action.status, ActionStatus.IN_PROGRESS)
        action.status = ActionStatus.IN_PROGRESS
        self.db.commit()

    def submit_action_response(
        self,
        action: Action,
        response_text: Optional[str],
        photo_urls: Optional[List[str]] = None,
        user_id: Optional[str] = None
    ) -> None:
        """
        Record the fix for an action and move it to completed.

        Evidence flags copied from the checklist item are enforced here.
        """
        check_action_transition(action.id, action.status, ActionStatus.COMPLETED)
        photo_urls = list(photo_urls or [])
        text = (response_text or "").strip()

        if action.requires_comment and not text:
            raise ValidationError(
                "A response comment is required for this action",
                entity_type="Action", entity_id=action.id, field="response_text"
            )
        if action.requires_photo and not photo_urls:
            raise ValidationError(
                "At least one response photo is required for this action",
                entity_type="Action", entity_id=action.id, field="response_photos"
            )

        action.status = ActionStatus.COMPLETED
        action.response_text = text or None
        action.response_photos = photo_urls
        action.responded_at = datetime.utcnow()
        record_event(
            self.db, ActivityEventType.ACTION_RESPONDED, "Action", action.id,
            user_id=user_id, payload={"photos": len(photo_urls)}
        )
        self.db.commit()

    def verify_action(
        self,
        action: Action,
        approved: bool,
        user_id: str,
        notes: Optional[str] = None
    ) -> None:
        """Accept (verified) or send back (rejected) a completed action. Both are final."""
        target = ActionStatus.VERIFIED if approved else ActionStatus.REJECTED
        check_action_transition(action.id, action.status, target)

        action.status = target
        action.verified_by_id = user_id
        action.verified_at = datetime.utcnow()
        action.verification_notes = notes
        record_event(
            self.db,
            ActivityEventType.ACTION_VERIFIED if approved else ActivityEventType.ACTION_REJECTED,
            "Action", action.id,
            user_id=user_id,
            payload={"notes": notes}
        )
        self.db.commit()
