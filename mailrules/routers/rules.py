"""Routes for mail rules: CRUD, ordering, preview and retroactive application."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from mailrules.config import Settings, get_settings
from mailrules.dependencies import (
    get_current_user_id,
    get_job_store,
    get_mail_store,
    get_rule_runner,
    get_rule_store,
)
from mailrules.models.rule_application import RuleApplication
from mailrules.schemas.rule import (
    ActionConfigSchema,
    AddSenderRequest,
    AddSenderResponse,
    RuleCreate,
    RulePreviewMatch,
    RulePreviewRequest,
    RulePreviewResponse,
    RuleReorderRequest,
    RuleReorderResponse,
    RuleResponse,
    RuleUpdate,
    validate_action_config,
)
from mailrules.schemas.rule_application import (
    ALL_RULES_NAME,
    ApplyAllRequest,
    RuleApplicationList,
    RuleApplicationResponse,
    RuleApplicationStarted,
)
from mailrules.services.rule_actions import ActionType
from mailrules.services.rule_application import RuleApplicationRunner
from mailrules.services.rule_preview import preview_conditions
from mailrules.services.rules_engine import (
    InvalidConditionError,
    SenderListError,
    add_sender_to_conditions,
    compile_conditions,
)
from mailrules.services.storage import JobStore, MailStore, RuleStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rules", tags=["rules"])


def _application_response(job: RuleApplication, rule_names: dict[uuid.UUID, str]) -> RuleApplicationResponse:
    if job.rule_id is None:
        rule_name = ALL_RULES_NAME
    else:
        rule_name = rule_names.get(job.rule_id)
    return RuleApplicationResponse(
        id=job.id,
        rule_id=job.rule_id,
        rule_name=rule_name,
        status=getattr(job.status, "value", job.status),
        total_count=job.total_count,
        processed_count=job.processed_count,
        matched_count=job.matched_count,
        match_breakdown=job.match_breakdown,
        error=job.error,
        started_at=job.started_at,
        completed_at=job.completed_at,
        created_at=job.created_at,
    )


async def _get_rule_or_404(rule_store: RuleStore, rule_id: uuid.UUID, user_id: uuid.UUID):
    rule = await rule_store.get_by_id(rule_id, user_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.get("", response_model=list[RuleResponse])
async def list_rules(
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """List the user's rules in priority order."""
    rules = await rule_store.list_rules(user_id)
    return [RuleResponse.model_validate(r) for r in rules]


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    body: RuleCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Create a rule at the lowest priority (after every existing rule)."""
    rule = await rule_store.create(user_id, body.model_dump(mode="json"))
    return RuleResponse.model_validate(rule)


# Declared before "/{rule_id}" so "applications" is never parsed as a rule id


@router.get("/applications", response_model=RuleApplicationList)
async def list_applications(
    user_id: uuid.UUID = Depends(get_current_user_id),
    job_store: JobStore = Depends(get_job_store),
    rule_store: RuleStore = Depends(get_rule_store),
    settings: Settings = Depends(get_settings),
):
    """Most recent rule application jobs, newest first."""
    jobs = await job_store.list_recent(user_id, settings.rule_application_list_limit)
    names = await rule_store.get_names([j.rule_id for j in jobs if j.rule_id is not None])
    return RuleApplicationList(applications=[_application_response(j, names) for j in jobs])


@router.get("/applications/{application_id}", response_model=RuleApplicationResponse)
async def get_application(
    application_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    job_store: JobStore = Depends(get_job_store),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Current status and progress of one job."""
    job = await job_store.get_by_id(application_id, user_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Application not found")
    names = await rule_store.get_names([job.rule_id] if job.rule_id is not None else [])
    return _application_response(job, names)


@router.post("/reorder", response_model=RuleReorderResponse)
async def reorder_rules(
    body: RuleReorderRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Rewrite rule positions. Unknown ids are ignored."""
    updated = await rule_store.reorder(user_id, [(p.id, p.position) for p in body.positions])
    return RuleReorderResponse(updated=updated)


@router.post("/preview", response_model=RulePreviewResponse)
async def preview_rule(
    body: RulePreviewRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    mail_store: MailStore = Depends(get_mail_store),
    settings: Settings = Depends(get_settings),
):
    """Show which existing messages a draft condition tree would match."""
    try:
        conditions = compile_conditions(body.conditions.model_dump())
    except InvalidConditionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    result = await preview_conditions(
        conditions,
        mail_store,
        user_id,
        body.folder_ids,
        scan_cap=settings.rule_preview_max_scan,
        match_cap=settings.rule_preview_max_matches,
        page_size=settings.rule_preview_page_size,
    )
    return RulePreviewResponse(
        matches=[RulePreviewMatch.model_validate(m) for m in result.matches],
        scanned_count=result.scanned_count,
        match_count=result.match_count,
    )


@router.post("/apply-all", response_model=RuleApplicationStarted, status_code=status.HTTP_202_ACCEPTED)
async def apply_all_rules(
    body: ApplyAllRequest | None = None,
    user_id: uuid.UUID = Depends(get_current_user_id),
    runner: RuleApplicationRunner = Depends(get_rule_runner),
):
    """Start a background job running every enabled rule, first match wins."""
    folder_ids = body.folder_ids if body is not None else None
    job = await runner.start_all(user_id, folder_ids)
    return RuleApplicationStarted(id=job.id, status="running", total_count=job.total_count)


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
):
    rule = await _get_rule_or_404(rule_store, rule_id, user_id)
    return RuleResponse.model_validate(rule)


@router.patch("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: uuid.UUID,
    body: RuleUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Partially update a rule. Omitted fields keep their current value."""
    rule = await _get_rule_or_404(rule_store, rule_id, user_id)
    changes = body.changes()

    # The action has to stay valid once merged with what is stored
    raw_config = changes["action_config"] if "action_config" in changes else rule.action_config
    try:
        action_type = ActionType(changes.get("action_type", rule.action_type))
        validate_action_config(action_type, ActionConfigSchema.model_validate(raw_config) if raw_config else None)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    rule = await rule_store.update(rule, changes)
    return RuleResponse.model_validate(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Delete a rule together with its application history."""
    rule = await _get_rule_or_404(rule_store, rule_id, user_id)
    await rule_store.delete(rule)


@router.post("/{rule_id}/apply", response_model=RuleApplicationStarted, status_code=status.HTTP_202_ACCEPTED)
async def apply_rule(
    rule_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
    runner: RuleApplicationRunner = Depends(get_rule_runner),
):
    """Start a background job applying this rule to the threads in its folders."""
    rule = await _get_rule_or_404(rule_store, rule_id, user_id)
    try:
        job = await runner.start_rule(rule)
    except InvalidConditionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return RuleApplicationStarted(id=job.id, status="running", total_count=job.total_count)


@router.post("/{rule_id}/add-sender", response_model=AddSenderResponse)
async def add_sender(
    rule_id: uuid.UUID,
    body: AddSenderRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    rule_store: RuleStore = Depends(get_rule_store),
):
    """Add a sender to the rule's top-level "sender in list" condition."""
    rule = await _get_rule_or_404(rule_store, rule_id, user_id)
    try:
        conditions, email_count = add_sender_to_conditions(rule.conditions or {}, body.email)
    except SenderListError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    await rule_store.update(rule, {"conditions": conditions})
    logger.info("Added sender to rule %s (%d senders)", rule.id, email_count)
    return AddSenderResponse(email_count=email_count)
