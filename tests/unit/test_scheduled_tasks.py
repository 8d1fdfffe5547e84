from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest

from shop_agent.core.exceptions import ValidationError
from shop_agent.models import ActionRecord, AnalysisRecord
from shop_agent.repositories.cache_repo import CacheRepository
from shop_agent.repositories.rate_limit_repo import RateLimitRepository
from shop_agent.services.actions.registry import ActionType
from shop_agent.services.retention import RetentionService
from shop_agent.services.scheduled_tasks import ScheduledTaskService

PAST = datetime(2024, 1, 1)


@pytest.fixture
def tasks(executor, task_repo, settings_store):
    settings_store.set("actions_enabled_types", [t.value for t in ActionType])
    return ScheduledTaskService(executor, task_repo)


class TestRunDueTasks:

    def test_only_due_tasks_run(self, tasks, task_repo):
        due = task_repo.add("campaign", {"campaign_name": "Spring", "target_audience": "all"}, PAST)
        later = task_repo.add("campaign", {"campaign_name": "Autumn", "target_audience": "all"},
                              datetime.utcnow() + timedelta(days=30))

        summary = tasks.run_due_tasks()

        assert summary == {"executed": 1, "failed": 0, "skipped": 0}
        assert task_repo.get(due.id).status == "completed"
        assert task_repo.get(due.id).executed_at is not None
        assert task_repo.get(later.id).status == "pending"

    def test_a_task_runs_once(self, tasks, task_repo):
        task_repo.add("campaign", {"campaign_name": "Once", "target_audience": "all"}, PAST)

        assert tasks.run_due_tasks()["executed"] == 1
        assert tasks.run_due_tasks() == {"executed": 0, "failed": 0, "skipped": 0}

    def test_task_claimed_elsewhere_is_skipped(self, tasks, task_repo):
        task_repo.add("campaign", {"campaign_name": "Race", "target_audience": "all"}, PAST)

        with patch.object(task_repo, "claim", return_value=False):
            assert tasks.run_due_tasks()["skipped"] == 1

    def test_unknown_task_type_fails(self, tasks, task_repo):
        task = task_repo.add("teleport", {}, PAST)

        assert tasks.run_due_tasks()["failed"] == 1
        stored = task_repo.get(task.id)
        assert stored.status == "failed"
        assert stored.result["error_code"] == "VALIDATION_ERROR"


class TestHandlers:

    def test_price_change_schedules_revert(self, tasks, task_repo, store):
        task_repo.add("price_change", {
            "product_id": 4, "new_price": 18, "current_price": "20.00", "revert_time": "2030-02-01",
        }, PAST)

        tasks.run_due_tasks()

        assert store.products[4]["regular_price"] == 18.0
        [revert] = task_repo.list(status="pending")
        assert revert.scheduled_at == datetime(2030, 2, 1)
        assert revert.task_data["new_price"] == 20.0

        tasks.run_due_tasks(now=datetime(2030, 2, 2))
        assert store.products[4]["regular_price"] == 20.0

    def test_price_change_drops_sale_price_above_new_price(self, tasks, store):
        store.products[2]["sale_price"] = 15.0

        result = tasks.execute_price_change({"product_id": 2, "new_price": 10})

        assert result.success
        assert store.products[2]["sale_price"] is None
        assert store.products[2]["price"] == 10

    def test_price_change_invalid(self, tasks):
        assert not tasks.execute_price_change({"product_id": 2, "new_price": -1}).success
        assert tasks.execute_price_change({"product_id": 999, "new_price": 5}).error_code == "NOT_FOUND"

    def test_followup_email(self, tasks, store):
        result = tasks.execute_followup({"customer_id": 101, "message": "How was your order?"})

        assert result.success
        sent = store.sent_emails[-1]
        assert sent["to"] == "anna@example.com"
        assert sent["subject"] == "A follow-up from our shop"

    def test_followup_sms(self, tasks):
        result = tasks.execute_followup({"customer_id": 101, "message": "Thanks!", "action": "send_sms"})

        assert result.success
        assert result.data["manual"] is True

    def test_followup_needs_message(self, tasks):
        assert not tasks.execute_followup({"customer_id": 101}).success

    def test_inventory_check(self, tasks, store):
        assert tasks.execute_inventory_check({"product_id": 1}).message == "Stock is fine"
        alerted = tasks.execute_inventory_check({"product_id": 1, "threshold": 20})
        assert alerted.data["below_threshold"]
        assert store.stock_alerts[1] == 20


class TestSchedule:

    def test_schedule_in_days(self, tasks):
        task = tasks.schedule("campaign", {"campaign_name": "Later"}, 2)
        assert task.scheduled_at > datetime.utcnow() + timedelta(days=1)

    def test_rejects_unknown_type_and_bad_time(self, tasks):
        with pytest.raises(ValidationError):
            tasks.schedule("teleport", {}, 1)
        with pytest.raises(ValidationError):
            tasks.schedule("campaign", {}, "whenever")

    def test_statistics(self, tasks):
        tasks.schedule("campaign", {}, 1)
        tasks.schedule("followup", {"message": "hi"}, 1)
        tasks.schedule("followup", {"message": "hi"}, 2)

        assert tasks.statistics() == {"pending": 3, "by_type": {"campaign": 1, "followup": 2}}


def test_retention_cleanup(db, settings_store, analysis_repo, action_repo, usage_repo, task_repo):
    old = datetime.utcnow() - timedelta(days=120)
    analysis_repo.save(AnalysisRecord(analysis_type="product", entity_id=1, entity_type="product", created_at=old))
    analysis_repo.save(AnalysisRecord(analysis_type="product", entity_id=2, entity_type="product"))
    action_repo.save(ActionRecord(action_type="send_email", status="completed", created_at=old))
    action_repo.save(ActionRecord(action_type="send_email", status="pending", created_at=old))
    usage_repo.increment("analyses_per_day", 3, day=date.today() - timedelta(days=120))
    usage_repo.increment("analyses_per_day", 1)
    finished = task_repo.add("campaign", {}, old)
    task_repo.claim(finished.id)
    task_repo.finish(finished.id, "completed", {})
    cache = CacheRepository(db)
    cache.set("stale", 1, expires_at=datetime.utcnow() - timedelta(minutes=1))
    rate_limits = RateLimitRepository(db)
    rate_limits.increment("rate_limit_ip_1_hour", datetime.utcnow() - timedelta(minutes=1))

    service = RetentionService(settings_store, analysis_repo, action_repo, usage_repo, cache, rate_limits, task_repo)
    removed = service.cleanup(days=90)

    assert removed == {"analyses": 1, "actions": 1, "usage": 1, "tasks": 1, "cache": 1, "rate_limits": 1}
    assert len(analysis_repo.list()) == 1
    # Open actions are kept regardless of age
    assert action_repo.count(status="pending") == 1
    assert usage_repo.get("analyses_per_day") == 1
