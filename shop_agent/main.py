from fastapi import Depends, FastAPI

from shop_agent.api import actions, jobs, respond
from shop_agent.config import settings
from shop_agent.core.error_handlers import register_exception_handlers
from shop_agent.core.logging_config import get_logger, setup_logging
from shop_agent.core.resilience import ResilienceManager
from shop_agent.database import create_db_and_tables
from shop_agent.dependencies import get_resilience, get_subscription
from shop_agent.domain.results import ServiceResult
from shop_agent.services.subscription import SubscriptionGate

setup_logging(log_level=settings.log_level, log_format=settings.log_format, log_file=settings.log_file)
logger = get_logger(__name__)

app = FastAPI(
    title="Shop Agent",
    description="LLM analysis of products and customers with an approval workflow for the suggested actions.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    tags_metadata=[
        {"name": "analysis-jobs", "description": "Start, poll and control the batch analysis job"},
        {"name": "actions", "description": "Review, approve and execute suggested actions"},
    ],
)

register_exception_handlers(app)

app.include_router(jobs.router)
app.include_router(actions.router)


@app.on_event("startup")
def on_startup():
    create_db_and_tables()
    logger.info("Shop agent started", tier=settings.subscription_tier)


@app.get("/health")
def health(
    subscription: SubscriptionGate = Depends(get_subscription),
    resilience: ResilienceManager = Depends(get_resilience),
):
    return respond(ServiceResult.ok({
        "status": "ok",
        "tier": subscription.tier,
        "usage": subscription.usage_summary(),
        "circuits": resilience.get_all_circuit_breakers(),
    }))
