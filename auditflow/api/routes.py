"""API routes for templates, audits, actions and audit schedules."""
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from auditflow.config import settings
from auditflow.database import get_db
from auditflow.models.activity import ActivityEvent, ActivityEventType, record_event
from auditflow.models.domain import (
    Action,
    Audit,
    AuditResult,
    Category,
    ChecklistItem,
    Location,
    ScheduledAudit,
    ScheduledAuditInstance,
    Template
)
from auditflow.models.enums import ActionStatus, AuditStatus, OPEN_ACTION_STATUSES
from auditflow.models.snapshots import (
    ActionSummary,
    AuditSummary,
    ReconciliationPlan,
    ResultRow
)
from auditflow.services import analytics
from auditflow.services.actions import create_manual_action
from auditflow.services.scheduling import ScheduleService
from auditflow.services.workflow import AuditWorkflow
from auditflow.api.schemas import (
    ActionCreate,
    ActionRespond,
    ActionResponse,
    ActionVerify,
    ActivityResponse,
    AnalyticsOverview,
    AuditCreate,
    AuditResponse,
    CompletionResponse,
    ErrorResponse,
    InstanceResponse,
    InstanceStart,
    LocationCreate,
    LocationResponse,
    ReconcileRequest,
    ResultsSubmit,
    ScheduledAuditActive,
    ScheduledAuditCreate,
    ScheduledAuditResponse,
    ScheduledAuditUpdate,
    ScoreResponse,
    TemplateActive,
    TemplateCreate,
    TemplateResponse
)

router = APIRouter()

ERROR_RESPONSES = {
    409: {"model": ErrorResponse, "description": "Invariant violation - illegal state change"},
    422: {"model": ErrorResponse, "description": "Validation error"},
}


def _get_or_404(db: Session, model, entity_id: int, label: str):
    row = db.get(model, entity_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


# Location endpoints
@router.post("/locations", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
def create_location(location_data: LocationCreate, db: Session = Depends(get_db)):
    location = Location(**location_data.model_dump())
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


@router.get("/locations", response_model=List[LocationResponse])
def list_locations(organization_id: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(Location)
    if organization_id:
        query = query.filter(Location.organization_id == organization_id)
    return query.order_by(Location.name).all()


# Template endpoints
@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(template_data: TemplateCreate, db: Session = Depends(get_db)):
    """Create a template with its categories and items, in the given order."""
    threshold = template_data.pass_threshold
    template = Template(
        organization_id=template_data.organization_id,
        name=template_data.name,
        description=template_data.description,
        pass_threshold=settings.default_pass_threshold if threshold is None else threshold,
        requires_photo=template_data.requires_photo
    )
    for c_index, category_data in enumerate(template_data.categories):
        category = Category(name=category_data.name, weight=category_data.weight, sort_order=c_index)
        for i_index, item_data in enumerate(category_data.items):
            item = ChecklistItem(**item_data.model_dump(exclude={"action_deadline_days"}), sort_order=i_index)
            item.action_deadline_days = (
                settings.default_action_deadline_days
                if item_data.action_deadline_days is None
                else item_data.action_deadline_days
            )
            category.items.append(item)
        template.categories.append(category)
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


@router.get("/templates/{template_id}", response_model=TemplateResponse)
def get_template(template_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, Template, template_id, "Template")


@router.put("/templates/{template_id}/active", response_model=TemplateResponse)
def set_template_active(template_id: int, active_data: TemplateActive, db: Session = Depends(get_db)):
    """Retire or reinstate a template. Inactive templates cannot start new audits."""
    template = _get_or_404(db, Template, template_id, "Template")
    if template.is_active != active_data.is_active:
        template.is_active = active_data.is_active
        event_type = (
            ActivityEventType.TEMPLATE_ACTIVATED if active_data.is_active
            else ActivityEventType.TEMPLATE_DEACTIVATED
        )
        record_event(db, event_type, "Template", template.id, user_id=active_data.user_id)
        db.commit()
        db.refresh(template)
    return template


@router.delete("/templates/{template_id}/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(template_id: int, item_id: int, db: Session = Depends(get_db)):
    """
    Remove an item from a template. Items with recorded results are only
    soft-deleted so historical audits keep their meaning.
    """
    item = _get_or_404(db, ChecklistItem, item_id, "Checklist item")
    if item.category.template_id != template_id:
        raise HTTPException(status_code=404, detail="Checklist item not found")
    referenced = db.query(AuditResult).filter(AuditResult.template_item_id == item_id).first()
    if referenced:
        item.deleted = True
    else:
        db.delete(item)
    db.commit()


@router.delete("/templates/{template_id}/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(template_id: int, category_id: int, db: Session = Depends(get_db)):
    """Soft-delete a category when any of its items has recorded results."""
    category = _get_or_404(db, Category, category_id, "Category")
    if category.template_id != template_id:
        raise HTTPException(status_code=404, detail="Category not found")
    item_ids = [item.id for item in category.items]
    referenced = item_ids and db.query(AuditResult).filter(
        AuditResult.template_item_id.in_(item_ids)
    ).first()
    if referenced:
        category.deleted = True
    else:
        db.delete(category)
    db.commit()


# Audit endpoints
@router.post("/audits", response_model=AuditResponse, status_code=status.HTTP_201_CREATED,
             responses=ERROR_RESPONSES)
def create_audit(audit_data: AuditCreate, db: Session = Depends(get_db)):
    location = _get_or_404(db, Location, audit_data.location_id, "Location")
    template = _get_or_404(db, Template, audit_data.template_id, "Template")
    return AuditWorkflow(db).start_audit(
        location, template, audit_data.inspector_id, audit_date=audit_data.audit_date
    )


@router.get("/audits", response_model=List[AuditResponse])
def list_audits(
    organization_id: Optional[str] = None,
    audit_status: Optional[AuditStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db)
):
    query = db.query(Audit)
    if organization_id:
        query = query.filter(Audit.organization_id == organization_id)
    if audit_status:
        query = query.filter(Audit.status == audit_status)
    return query.order_by(Audit.audit_date.desc(), Audit.id.desc()).all()


@router.get("/audits/{audit_id}", response_model=AuditResponse)
def get_audit(audit_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, Audit, audit_id, "Audit")


@router.put("/audits/{audit_id}/results", response_model=AuditResponse, responses=ERROR_RESPONSES)
def submit_results(audit_id: int, results_data: ResultsSubmit, db: Session = Depends(get_db)):
    """
    Record results for an open audit.
    Completed and cancelled audits refuse new results (409).
    """
    audit = _get_or_404(db, Audit, audit_id, "Audit")
    workflow = AuditWorkflow(db)
    for entry in results_data.results:
        workflow.record_result(
            audit, entry.template_item_id, entry.result,
            comment=entry.comment, photo_urls=entry.photo_urls
        )
    db.refresh(audit)
    return audit


@router.get("/audits/{audit_id}/score", response_model=ScoreResponse)
def preview_score(audit_id: int, db: Session = Depends(get_db)):
    """Score the results recorded so far, without completing the audit."""
    audit = _get_or_404(db, Audit, audit_id, "Audit")
    scored = AuditWorkflow(db).score(audit)
    return ScoreResponse(
        **scored.summary().model_dump(),
        failed_item_ids=[item.id for item in scored.failed_items_needing_action],
        missing_item_ids=scored.missing_item_ids
    )


@router.post("/audits/{audit_id}/complete", response_model=CompletionResponse, responses=ERROR_RESPONSES)
def complete_audit(audit_id: int, db: Session = Depends(get_db)):
    """
    Score and close the audit, creating corrective actions for failed items.
    Completing an audit twice is refused (409).
    """
    audit = _get_or_404(db, Audit, audit_id, "Audit")
    actions = AuditWorkflow(db).complete_audit(audit)
    db.refresh(audit)
    return CompletionResponse(
        audit=AuditResponse.model_validate(audit),
        actions=[ActionResponse.model_validate(a) for a in actions]
    )


@router.post("/audits/{audit_id}/cancel", response_model=AuditResponse, responses=ERROR_RESPONSES)
def cancel_audit(audit_id: int, user_id: Optional[str] = None, db: Session = Depends(get_db)):
    audit = _get_or_404(db, Audit, audit_id, "Audit")
    AuditWorkflow(db).cancel_audit(audit, user_id=user_id)
    db.refresh(audit)
    return audit


# Action endpoints
@router.get("/actions", response_model=List[ActionResponse])
def list_actions(
    organization_id: Optional[str] = None,
    action_status: Optional[ActionStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db)
):
    query = db.query(Action)
    if organization_id:
        query = query.filter(Action.organization_id == organization_id)
    if action_status:
        query = query.filter(Action.status == action_status)
    return query.order_by(Action.created_at.desc(), Action.id.desc()).all()


@router.post("/actions", response_model=ActionResponse, status_code=status.HTTP_201_CREATED,
             responses=ERROR_RESPONSES)
def create_action(action_data: ActionCreate, db: Session = Depends(get_db)):
    """Raise a corrective action by hand."""
    _get_or_404(db, Location, action_data.location_id, "Location")
    draft = create_manual_action(**action_data.model_dump(), today=date.today())
    return AuditWorkflow(db).create_action(draft)


@router.get("/actions/{action_id}", response_model=ActionResponse)
def get_action(action_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, Action, action_id, "Action")


@router.put("/actions/{action_id}/start", response_model=ActionResponse, responses=ERROR_RESPONSES)
def start_action(action_id: int, db: Session = Depends(get_db)):
    action = _get_or_404(db, Action, action_id, "Action")
    AuditWorkflow(db).start_action(action)
    db.refresh(action)
    return action


@router.put("/actions/{action_id}/respond", response_model=ActionResponse, responses=ERROR_RESPONSES)
def respond_to_action(action_id: int, response_data: ActionRespond, db: Session = Depends(get_db)):
    """
    Submit the fix for an action.
    Refused (422) when the item demanded a photo or comment that is missing.
    """
    action = _get_or_404(db, Action, action_id, "Action")
    AuditWorkflow(db).submit_action_response(
        action,
        response_data.response_text,
        photo_urls=response_data.response_photos,
        user_id=response_data.user_id
    )
    db.refresh(action)
    return action


@router.put("/actions/{action_id}/verify", response_model=ActionResponse, responses=ERROR_RESPONSES)
def verify_action(action_id: int, verify_data: ActionVerify, db: Session = Depends(get_db)):
    """Approve (verified) or reject a completed action. Both outcomes are final."""
    action = _get_or_404(db, Action, action_id, "Action")
    AuditWorkflow(db).verify_action(
        action, verify_data.approved, verify_data.user_id, notes=verify_data.notes
    )
    db.refresh(action)
    return action


# Scheduled audit endpoints
@router.post("/scheduled-audits", response_model=ScheduledAuditResponse,
             status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def create_scheduled_audit(schedule_data: ScheduledAuditCreate, db: Session = Depends(get_db)):
    _get_or_404(db, Location, schedule_data.location_id, "Location")
    _get_or_404(db, Template, schedule_data.template_id, "Template")
    return ScheduleService(db).create_schedule(**schedule_data.model_dump())


@router.get("/scheduled-audits", response_model=List[ScheduledAuditResponse])
def list_scheduled_audits(
    organization_id: Optional[str] = None,
    location_id: Optional[int] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db)
):
    query = db.query(ScheduledAudit)
    if organization_id:
        query = query.filter(ScheduledAudit.organization_id == organization_id)
    if location_id is not None:
        query = query.filter(ScheduledAudit.location_id == location_id)
    if is_active is not None:
        query = query.filter(ScheduledAudit.is_active.is_(is_active))
    return query.order_by(ScheduledAudit.next_scheduled_date, ScheduledAudit.id).all()


@router.get("/scheduled-audits/{schedule_id}/occurrences", response_model=List[date],
            responses=ERROR_RESPONSES)
def preview_occurrences(
    schedule_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db)
):
    """Due dates the rule produces in [start, end] (default: the next 90 days)."""
    schedule = _get_or_404(db, ScheduledAudit, schedule_id, "Scheduled audit")
    start = start or date.today()
    end = end or start + timedelta(days=90)
    return ScheduleService(db).preview(schedule, start, end)


@router.put("/scheduled-audits/{schedule_id}", response_model=ScheduledAuditResponse,
            responses=ERROR_RESPONSES)
def update_scheduled_audit(
    schedule_id: int,
    update_data: ScheduledAuditUpdate,
    as_of: Optional[date] = None,
    db: Session = Depends(get_db)
):
    """Change a rule; pending instances it no longer produces are dropped."""
    schedule = _get_or_404(db, ScheduledAudit, schedule_id, "Scheduled audit")
    fields = update_data.model_dump(exclude_unset=True, exclude={"user_id"})
    if "location_id" in fields:
        _get_or_404(db, Location, fields["location_id"], "Location")
    if "template_id" in fields:
        _get_or_404(db, Template, fields["template_id"], "Template")
    return ScheduleService(db).update_schedule(
        schedule, as_of=as_of, user_id=update_data.user_id, **fields
    )


@router.delete("/scheduled-audits/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_scheduled_audit(schedule_id: int, user_id: Optional[str] = None, db: Session = Depends(get_db)):
    schedule = _get_or_404(db, ScheduledAudit, schedule_id, "Scheduled audit")
    ScheduleService(db).delete_schedule(schedule, user_id=user_id)


@router.put("/scheduled-audits/{schedule_id}/active", response_model=ScheduledAuditResponse)
def set_scheduled_audit_active(
    schedule_id: int,
    active_data: ScheduledAuditActive,
    db: Session = Depends(get_db)
):
    schedule = _get_or_404(db, ScheduledAudit, schedule_id, "Scheduled audit")
    ScheduleService(db).set_active(schedule, active_data.is_active)
    db.refresh(schedule)
    return schedule


@router.get("/scheduled-audits/{schedule_id}/instances", response_model=List[InstanceResponse])
def list_instances(schedule_id: int, limit: int = 20, db: Session = Depends(get_db)):
    _get_or_404(db, ScheduledAudit, schedule_id, "Scheduled audit")
    return db.query(ScheduledAuditInstance).filter(
        ScheduledAuditInstance.scheduled_audit_id == schedule_id
    ).order_by(ScheduledAuditInstance.due_date.desc()).limit(limit).all()


@router.post("/scheduled-audits/reconcile", response_model=ReconciliationPlan, responses=ERROR_RESPONSES)
def reconcile_schedules(request: ReconcileRequest, db: Session = Depends(get_db)):
    """
    Materialize upcoming instances and mark elapsed ones missed.
    Invalid rules are reported in `errors` without stopping the others.
    """
    return ScheduleService(db).run_reconciliation(
        as_of=request.as_of, organization_id=request.organization_id
    )


@router.get("/scheduled-instances/reminders", response_model=List[InstanceResponse])
def due_reminders(as_of: Optional[date] = None, db: Session = Depends(get_db)):
    return ScheduleService(db).due_reminders(as_of or date.today())


@router.put("/scheduled-instances/{instance_id}/start", response_model=AuditResponse,
            responses=ERROR_RESPONSES)
def start_instance(instance_id: int, start_data: InstanceStart, db: Session = Depends(get_db)):
    """Create the audit for a pending scheduled instance."""
    instance = _get_or_404(db, ScheduledAuditInstance, instance_id, "Instance")
    return ScheduleService(db).start_instance(instance, inspector_id=start_data.inspector_id)


@router.put("/scheduled-instances/{instance_id}/skip", response_model=InstanceResponse,
            responses=ERROR_RESPONSES)
def skip_instance(instance_id: int, user_id: Optional[str] = None, db: Session = Depends(get_db)):
    instance = _get_or_404(db, ScheduledAuditInstance, instance_id, "Instance")
    ScheduleService(db).skip_instance(instance, user_id=user_id)
    db.refresh(instance)
    return instance


# Analytics endpoints
def _completed_audits(db: Session, organization_id: str) -> List[Audit]:
    return db.query(Audit).filter(
        Audit.organization_id == organization_id,
        Audit.status == AuditStatus.COMPLETED
    ).all()


def _action_summaries(db: Session, organization_id: str) -> List[ActionSummary]:
    return [
        ActionSummary.model_validate(a)
        for a in db.query(Action).filter(Action.organization_id == organization_id).all()
    ]


@router.get("/analytics/overview", response_model=AnalyticsOverview)
def analytics_overview(organization_id: str, as_of: Optional[date] = None, db: Session = Depends(get_db)):
    """Pass rate, score trend, monthly statistics and per-location performance."""
    as_of = as_of or date.today()
    audits = [AuditSummary.model_validate(a) for a in _completed_audits(db, organization_id)]
    actions = _action_summaries(db, organization_id)
    return AnalyticsOverview(
        total_audits=len(audits),
        pass_rate=analytics.pass_rate(audits),
        avg_score=analytics.average_score(audits),
        score_trend=analytics.score_trend(audits),
        open_actions=sum(1 for a in actions if a.status in OPEN_ACTION_STATUSES),
        overdue_actions=sum(1 for a in actions if analytics.is_overdue(a, as_of)),
        monthly=analytics.monthly_stats(audits),
        locations=analytics.location_performance(audits, actions, as_of)
    )


def _result_rows(db: Session, organization_id: str) -> List[ResultRow]:
    rows = db.query(AuditResult, ChecklistItem, Category).join(
        Audit, AuditResult.audit_id == Audit.id
    ).join(
        ChecklistItem, AuditResult.template_item_id == ChecklistItem.id
    ).join(
        Category, ChecklistItem.category_id == Category.id
    ).filter(
        Audit.organization_id == organization_id,
        Audit.status == AuditStatus.COMPLETED
    ).all()
    return [
        ResultRow(
            template_item_id=item.id,
            item_title=item.title,
            category_id=category.id,
            category_name=category.name,
            result=result.result
        )
        for result, item, category in rows
    ]


@router.get("/analytics/categories", response_model=List[analytics.CategoryPerformance])
def analytics_categories(organization_id: str, db: Session = Depends(get_db)):
    return analytics.category_performance(_result_rows(db, organization_id))


@router.get("/analytics/failed-items", response_model=List[analytics.FailedItemStats])
def analytics_failed_items(organization_id: str, limit: int = 10, db: Session = Depends(get_db)):
    return analytics.most_failed_items(_result_rows(db, organization_id), limit=limit)


@router.get("/analytics/inspectors", response_model=List[analytics.InspectorPerformance])
def analytics_inspectors(organization_id: str, as_of: Optional[date] = None, db: Session = Depends(get_db)):
    audits = [AuditSummary.model_validate(a) for a in _completed_audits(db, organization_id)]
    return analytics.inspector_performance(audits, as_of or date.today())


@router.get("/analytics/action-status", response_model=List[analytics.ActionStatusCount])
def analytics_action_status(organization_id: str, as_of: Optional[date] = None, db: Session = Depends(get_db)):
    return analytics.action_status_distribution(
        _action_summaries(db, organization_id), as_of or date.today()
    )


@router.get("/analytics/location-comparison", response_model=List[analytics.LocationComparison])
def analytics_location_comparison(
    organization_id: str,
    as_of: Optional[date] = None,
    db: Session = Depends(get_db)
):
    """Recent against all-time average score for locations with two or more audits."""
    as_of = as_of or date.today()
    audits = [AuditSummary.model_validate(a) for a in _completed_audits(db, organization_id)]
    performance = analytics.location_performance(audits, _action_summaries(db, organization_id), as_of)
    return analytics.location_comparison(performance)


# Activity feed
@router.get("/activity", response_model=List[ActivityResponse])
def list_activity(entity_type: Optional[str] = None, limit: int = 50, db: Session = Depends(get_db)):
    query = db.query(ActivityEvent)
    if entity_type:
        query = query.filter(ActivityEvent.entity_type == entity_type)
    return query.order_by(ActivityEvent.created_at.desc(), ActivityEvent.id.desc()).limit(limit).all()
