"""
Shared fixtures: an in-memory database, repositories bound to it, a seeded
in-memory shop and a scripted LLM gateway.
"""

import json
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from shop_agent.database import DatabaseSession
from shop_agent.repositories.action_repo import ActionRepository
from shop_agent.repositories.analysis_repo import AnalysisRepository
from shop_agent.repositories.job_state_repo import JobStateRepository
from shop_agent.repositories.settings_repo import SettingsRepository
from shop_agent.repositories.task_repo import ScheduledTaskRepository
from shop_agent.repositories.usage_repo import UsageRepository
from shop_agent.services.actions.executor import ActionExecutor
from shop_agent.services.actions.registry import ActionRegistry
from shop_agent.services.analyzers.customer import CustomerAnalyzer
from shop_agent.services.analyzers.product import ProductAnalyzer
from shop_agent.services.job_manager import AnalysisJobManager
from shop_agent.services.llm.base import LLMResponse
from shop_agent.services.settings_store import SettingsStore
from shop_agent.services.store import InMemoryStore
from shop_agent.services.subscription import SubscriptionGate

DISCOUNT_REPLY = json.dumps({
    "analysis": "Sales dropped over the last month",
    "priority_score": 75,
    "suggestions": [
        {
            "type": "create_discount",
            "priority": 80,
            "data": {"discount_percent": 15},
            "reasoning": "A short promotion should revive sales",
        }
    ],
})


class FakeLLM:
    """Stands in for LLMGateway: replies are consumed in order, then ``default`` repeats."""

    provider_name = "fake"
    model = "fake-model"

    def __init__(self, replies=None, default=DISCOUNT_REPLY):
        self.replies = list(replies or [])
        self.default = default
        self.calls = []

    def complete(self, messages, options=None):
        self.calls.append(messages)
        reply = self.replies.pop(0) if self.replies else self.default
        if callable(reply):
            reply = reply(messages)
        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(success=True, content=reply, model=self.model, provider="fake", tokens_used=42)


class Clock:
    """Manually advanced clock for lease and staleness tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 6, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def make_products(count):
    return {
        i: {
            "name": f"Product {i}",
            "price": "20.00",
            "regular_price": "20.00",
            "stock_quantity": 10 + i,
            "status": "publish",
            "date_created": f"2024-01-{i:02d}",
        }
        for i in range(1, count + 1)
    }


def make_customers():
    today = date.today()
    return {
        101: {"email": "anna@example.com", "first_name": "Anna", "phone": "+1 (555) 010-2030",
              "date_created": "2023-01-01"},
        102: {"email": "ben@example.com", "first_name": "Ben", "date_created": "2023-02-01"},
    }, [
        {"customer_id": 101, "total": 120.0, "date": (today - timedelta(days=10)).isoformat(),
         "items": [{"product_id": 1, "quantity": 2, "total": 40.0}]},
        {"customer_id": 101, "total": 80.0, "date": (today - timedelta(days=200)).isoformat(),
         "items": [{"product_id": 2, "quantity": 1, "total": 20.0}]},
        {"customer_id": 102, "total": 35.0, "date": (today - timedelta(days=70)).isoformat(),
         "items": [{"product_id": 1, "quantity": 1, "total": 20.0}]},
    ]


@pytest.fixture
def db():
    database = DatabaseSession("sqlite://")
    database.create_all()
    yield database
    database.engine.dispose()


@pytest.fixture
def settings_store(db):
    return SettingsStore(SettingsRepository(db))


@pytest.fixture
def usage_repo(db):
    return UsageRepository(db)


@pytest.fixture
def action_repo(db):
    return ActionRepository(db)


@pytest.fixture
def analysis_repo(db):
    return AnalysisRepository(db)


@pytest.fixture
def task_repo(db):
    return ScheduledTaskRepository(db)


@pytest.fixture
def state_repo(db):
    return JobStateRepository(db)


@pytest.fixture
def store():
    customers, orders = make_customers()
    return InMemoryStore(products=make_products(7), customers=customers, orders=orders)


@pytest.fixture
def subscription(usage_repo):
    return SubscriptionGate("enterprise", usage_repo)


@pytest.fixture
def notifications():
    return MagicMock()


@pytest.fixture
def registry(store, settings_store, task_repo):
    return ActionRegistry(store, settings_store, task_repo)


@pytest.fixture
def executor(registry, action_repo, subscription, notifications, settings_store):
    return ActionExecutor(
        registry,
        repo=action_repo,
        subscription=subscription,
        notifications=notifications,
        settings_store=settings_store,
    )


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def product_analyzer(llm, store, analysis_repo, settings_store):
    return ProductAnalyzer(llm, store, repo=analysis_repo, settings_store=settings_store)


@pytest.fixture
def customer_analyzer(llm, store, analysis_repo, settings_store):
    return CustomerAnalyzer(llm, store, repo=analysis_repo, settings_store=settings_store)


@pytest.fixture
def job_manager(product_analyzer, customer_analyzer, executor, subscription, state_repo, analysis_repo,
                notifications, clock):
    return AnalysisJobManager(
        product_analyzer,
        customer_analyzer,
        executor,
        subscription=subscription,
        state_repo=state_repo,
        analysis_repo=analysis_repo,
        notifications=notifications,
        batch_size=3,
        stale_after_seconds=300,
        clock=clock,
    )
