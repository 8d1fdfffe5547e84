from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from shop_agent.api import rate_limit, respond
from shop_agent.core.exceptions import NotFoundError
from shop_agent.core.resilience import ResilienceManager
from shop_agent.dependencies import get_action_executor, get_cache, get_resilience
from shop_agent.domain.results import ServiceResult
from shop_agent.services.actions.executor import ActionExecutor
from shop_agent.services.cache import CacheService

router = APIRouter(prefix="/agent/actions", tags=["actions"])


class ApproveRequest(BaseModel):
    approved_by: str = "admin"


class DismissAllRequest(BaseModel):
    statuses: List[str] = Field(default_factory=lambda: ["pending"])


class ExecuteApprovedRequest(BaseModel):
    limit: Optional[int] = Field(None, ge=1, le=100)


class RunActionRequest(BaseModel):
    action_type: str
    data: Dict[str, Any] = Field(default_factory=dict)


@router.get("")
def list_actions(
    status: Optional[List[str]] = Query(None),
    action_type: Optional[str] = Query(None),
    analysis_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    executor: ActionExecutor = Depends(get_action_executor),
):
    actions = executor.list_actions(
        status=status, action_type=action_type, analysis_id=analysis_id, limit=limit, offset=offset
    )
    return respond(ServiceResult.ok({"actions": actions, "count": len(actions)}))


@router.get("/stats")
def action_stats(
    executor: ActionExecutor = Depends(get_action_executor),
    resilience: ResilienceManager = Depends(get_resilience),
    cache: CacheService = Depends(get_cache),
):
    """Counts by status and type; served from the last good read while the database is failing."""
    outcome = resilience.read_with_fallback("db_action_stats", executor.stats, cache, "action_stats")
    return respond(ServiceResult.ok(dict(outcome.data, source=outcome.source)))


@router.get("/types")
def action_types(executor: ActionExecutor = Depends(get_action_executor)):
    """Every action type with its label, required fields and enabled flag."""
    return respond(ServiceResult.ok(executor.registry.available()))


@router.post("/run", dependencies=[Depends(rate_limit)])
def run_action(request: RunActionRequest, executor: ActionExecutor = Depends(get_action_executor)):
    return respond(executor.execute(request.action_type, request.data))


@router.post("/approve-all")
def approve_all(
    request: Optional[ApproveRequest] = None,
    executor: ActionExecutor = Depends(get_action_executor),
):
    return respond(executor.approve_all_pending(request.approved_by if request else "admin"))


@router.post("/dismiss-all")
def dismiss_all(
    request: Optional[DismissAllRequest] = None,
    executor: ActionExecutor = Depends(get_action_executor),
):
    return respond(executor.dismiss_all_by_status(request.statuses if request else None))


@router.post("/execute-approved", dependencies=[Depends(rate_limit)])
def execute_approved(
    request: Optional[ExecuteApprovedRequest] = None,
    executor: ActionExecutor = Depends(get_action_executor),
):
    return respond(executor.execute_approved(request.limit if request else None))


@router.get("/{action_id}")
def get_action(action_id: int, executor: ActionExecutor = Depends(get_action_executor)):
    record = executor.repo.get(action_id)
    if record is None:
        return respond(ServiceResult.fail(NotFoundError("Action", action_id)))
    return respond(ServiceResult.ok(record.to_dict()))


@router.post("/{action_id}/approve")
def approve(
    action_id: int,
    request: Optional[ApproveRequest] = None,
    executor: ActionExecutor = Depends(get_action_executor),
):
    return respond(executor.approve_action(action_id, request.approved_by if request else "admin"))


@router.post("/{action_id}/dismiss")
def dismiss(action_id: int, executor: ActionExecutor = Depends(get_action_executor)):
    return respond(executor.dismiss_action(action_id))


@router.post("/{action_id}/execute")
def execute(action_id: int, executor: ActionExecutor = Depends(get_action_executor)):
    return respond(executor.execute_by_id(action_id))
