from datetime import datetime, timedelta, timezone

from shop_agent.models import ActionRecord


def action(action_type="send_email", status="pending", priority=50, requires_approval=False, **data):
    return ActionRecord(action_type=action_type, status=status, priority_score=priority,
                        requires_approval=requires_approval, action_data=data)


class TestActionRepository:

    def test_save_supersedes_open_action_for_same_entity(self, action_repo):
        first = action_repo.save(action(entity_type="product", entity_id=1))
        done = action_repo.save(action(status="completed", entity_type="product", entity_id=2))
        second = action_repo.save(action(entity_type="product", entity_id="1"))

        assert action_repo.get(first.id) is None
        assert action_repo.get(second.id) is not None
        assert action_repo.get(done.id) is not None

    def test_other_types_and_entities_are_kept(self, action_repo):
        action_repo.save(action(entity_type="product", entity_id=1))
        action_repo.save(action("create_discount", entity_type="product", entity_id=1))
        action_repo.save(action(entity_type="customer", entity_id=1))
        action_repo.save(action())
        action_repo.save(action())

        assert action_repo.count() == 5

    def test_transition_only_from_expected_status(self, action_repo):
        record = action_repo.save(action())

        assert action_repo.transition(record.id, ["pending"], status="cancelled")
        assert not action_repo.transition(record.id, ["pending"], status="completed")
        assert action_repo.get(record.id).status == "cancelled"

    def test_ready_orders_by_priority_and_skips_unapproved(self, action_repo):
        low = action_repo.save(action(priority=10))
        high = action_repo.save(action(status="approved", priority=90, requires_approval=True))
        action_repo.save(action(priority=99, requires_approval=True))
        action_repo.save(action(status="failed", priority=100))

        assert [r.id for r in action_repo.ready(10)] == [high.id, low.id]
        assert [r.id for r in action_repo.ready(1)] == [high.id]

    def test_increment_retry_requeues(self, action_repo):
        record = action_repo.save(action(status="approved"))

        assert action_repo.increment_retry(record.id, "timeout")

        stored = action_repo.get(record.id)
        assert stored.status == "pending"
        assert stored.retry_count == 1
        assert stored.error_message == "timeout"

    def test_bulk_status_changes(self, action_repo):
        for _ in range(2):
            action_repo.save(action())
        action_repo.save(action(status="failed"))

        assert action_repo.approve_all_pending("ops") == 2
        assert action_repo.cancel_by_status(["approved", "failed"]) == 2
        assert action_repo.delete_by_status(["cancelled", "failed"]) == 3
        assert action_repo.count() == 0

    def test_stats(self, action_repo):
        action_repo.save(action())
        action_repo.save(action("create_discount", status="completed"))

        stats = action_repo.stats()

        assert stats["total"] == 2
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["approved"] == 0
        assert stats["by_type"] == {"send_email": 1, "create_discount": 1}


def test_timestamps_are_stored_as_naive_utc(action_repo):
    plus_two = timezone(timedelta(hours=2))
    record = action_repo.save(ActionRecord(action_type="send_email", created_at=datetime(2024, 3, 1, 12, tzinfo=plus_two)))

    assert action_repo.transition(record.id, ["pending"], status="completed",
                                  executed_at=datetime(2024, 3, 1, 13, 30, tzinfo=timezone.utc))

    stored = action_repo.get(record.id)
    assert stored.created_at == datetime(2024, 3, 1, 10)
    assert stored.executed_at == datetime(2024, 3, 1, 13, 30)
    assert action_repo.count(status="completed") == 1
