"""
Weighted audit scoring.

Every non-deleted item contributes category.weight * item.weight:
- pass: to both total_score and max_score
- fail: to max_score only (and may need a corrective action)
- na / no result: to neither

The pass threshold is applied to the rounded percentage, never to raw counts.
"""
import logging
import math
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as SchemaError

from auditflow.errors import ValidationError
from auditflow.models.enums import ResultValue
from auditflow.models.snapshots import (
    ItemNode,
    ResultEntry,
    ResultSet,
    ScoreSummary,
    TemplateGraph
)

logger = logging.getLogger(__name__)


class ScoreResult(BaseModel):
    """Score summary plus the follow-up work the scores imply."""
    model_config = ConfigDict(frozen=True)

    total_score: float
    max_score: float
    pass_percentage: int
    passed: bool
    failed_items_needing_action: List[ItemNode] = []
    missing_item_ids: List[int] = []

    def summary(self) -> ScoreSummary:
        return ScoreSummary(
            total_score=self.total_score,
            max_score=self.max_score,
            pass_percentage=self.pass_percentage,
            passed=self.passed
        )


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def percentage(total_score: float, max_score: float) -> int:
    """
    Integer percentage of achieved weighted score.

    A template with nothing scorable scores 0: an audit where every item was
    n/a has not demonstrated compliance, so it cannot pass.
    """
    if max_score <= 0:
        return 0
    return round_half_up(total_score / max_score * 100)


def compute_score(
    template: TemplateGraph,
    results: Mapping[int, ResultEntry]
) -> ScoreResult:
    """
    Score one result set against a template graph.

    Results for items that are not (or no longer) part of the template
    contribute nothing. They are logged and reported in missing_item_ids, not
    raised, since historical audits may reference since-deleted items.
    """
    total_score = 0.0
    max_score = 0.0
    failed_items: List[ItemNode] = []
    scored_ids = set()

    for category in template.categories:
        if category.deleted:
            continue
        for item in category.items:
            if item.deleted:
                continue
            scored_ids.add(item.id)

            entry = results.get(item.id)
            if entry is None or entry.result == ResultValue.NA:
                continue

            contribution = category.weight * item.weight
            max_score += contribution
            if entry.result == ResultValue.PASS:
                total_score += contribution
            elif item.creates_action_on_fail:
                failed_items.append(item)

    missing = sorted(item_id for item_id in results if item_id not in scored_ids)
    if missing:
        logger.warning(
            "Template %s: %d result(s) reference unknown or deleted items %s, ignored",
            template.id, len(missing), missing
        )

    pass_percentage = percentage(total_score, max_score)
    return ScoreResult(
        total_score=total_score,
        max_score=max_score,
        pass_percentage=pass_percentage,
        passed=max_score > 0 and pass_percentage >= template.pass_threshold,
        failed_items_needing_action=failed_items,
        missing_item_ids=missing
    )


def _schema_error(exc: SchemaError, entity_type: str, entity_id) -> ValidationError:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return ValidationError(
        f"Invalid {entity_type.lower()}: {location or 'input'}: {first.get('msg')}",
        entity_type=entity_type,
        entity_id=entity_id,
        field=location or None
    )


def load_template(data) -> TemplateGraph:
    """
    Parse a template graph from a dict or an ORM Template.

    Raises ValidationError naming the template when weights, threshold or
    other fields are malformed.
    """
    if isinstance(data, TemplateGraph):
        return data
    entity_id = data.get("id") if isinstance(data, Mapping) else getattr(data, "id", None)
    try:
        return TemplateGraph.model_validate(data)
    except SchemaError as exc:
        raise _schema_error(exc, "Template", entity_id) from exc


def load_results(data: Mapping, audit_id: Optional[int] = None) -> ResultSet:
    """Parse a mapping of item id -> {result, comment?, photo_urls?}."""
    results: ResultSet = {}
    for key, value in data.items():
        try:
            item_id = int(key)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Result key {key!r} is not an item id",
                entity_type="AuditResult",
                entity_id=audit_id,
                field=str(key)
            )
        try:
            results[item_id] = ResultEntry.model_validate(value)
        except SchemaError as exc:
            raise _schema_error(exc, "AuditResult", audit_id) from exc
    return results


def results_from_rows(rows) -> ResultSet:
    """Build a result set from AuditResult rows."""
    return {
        row.template_item_id: ResultEntry(
            result=row.result,
            comment=row.comment,
            photo_urls=list(row.photo_urls or [])
        )
        for row in rows
    }
