from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from shop_agent.api import rate_limit, respond
from shop_agent.core.logging_config import get_logger
from shop_agent.dependencies import get_job_manager
from shop_agent.services.job_manager import AnalysisJobManager

router = APIRouter(prefix="/agent/jobs", tags=["analysis-jobs"])
logger = get_logger(__name__)


class StartJobRequest(BaseModel):
    type: str = Field("all", description="all, products or customers")


class ProcessBatchRequest(BaseModel):
    batch_size: Optional[int] = Field(None, ge=1, le=50)


@router.post("/start", dependencies=[Depends(rate_limit)])
def start_job(
    request: Optional[StartJobRequest] = None,
    manager: AnalysisJobManager = Depends(get_job_manager),
):
    """Queue every entity of the requested kind and mark the job running."""
    return respond(manager.start_job(request.type if request else "all"))


@router.get("/progress")
def get_progress(manager: AnalysisJobManager = Depends(get_job_manager)):
    return respond(manager.get_job_progress())


@router.post("/process")
def process_batch(
    request: Optional[ProcessBatchRequest] = None,
    manager: AnalysisJobManager = Depends(get_job_manager),
):
    """Advance the running job by one batch. Clients poll this until the job leaves ``running``."""
    return respond(manager.process_next_batch(request.batch_size if request else None))


@router.post("/cancel")
def cancel_job(manager: AnalysisJobManager = Depends(get_job_manager)):
    return respond(manager.cancel_job())


@router.post("/acknowledge")
def acknowledge(manager: AnalysisJobManager = Depends(get_job_manager)):
    return respond(manager.acknowledge_completion())


@router.post("/resume")
def resume_stale(manager: AnalysisJobManager = Depends(get_job_manager)):
    return respond(manager.resume_stale_job())


@router.post("/reset")
def reset(manager: AnalysisJobManager = Depends(get_job_manager)):
    logger.warning("Job state reset requested over HTTP")
    return respond(manager.reset_job_state())
