from unittest.mock import MagicMock, patch

import pytest

from shop_agent.core.exceptions import PersistenceError
from shop_agent.domain.results import ServiceResult
from shop_agent.worker.job_driver import JobDriver


@pytest.fixture
def driver():
    return JobDriver(poll_interval=0)


class TestJobDriver:

    def test_drive_runs_the_job_to_completion(self, driver, job_manager):
        job_manager.start_job("all")

        assert driver._drive(job_manager) == 3
        assert job_manager.get_job_progress().data["status"] == "completed"

    def test_drive_without_job(self, driver, job_manager):
        assert driver._drive(job_manager) == 0

    def test_drive_stops_when_another_process_holds_the_lease(self, driver, job_manager):
        job_manager.start_job("products")
        manager = MagicMock(wraps=job_manager)
        manager.process_next_batch.return_value = job_manager.get_job_progress()

        assert driver._drive(manager) == 1
        assert manager.process_next_batch.call_count == 2

    def test_tick_runs_cleanup_once_per_day(self, driver, job_manager):
        tasks = MagicMock()
        tasks.run_due_tasks.return_value = {"executed": 2, "failed": 1, "skipped": 0}
        retention = MagicMock()
        retention.cleanup.return_value = {"analyses": 4, "actions": 1}

        with patch("shop_agent.worker.job_driver.get_job_manager", return_value=job_manager), \
                patch("shop_agent.worker.job_driver.get_task_service", return_value=tasks), \
                patch("shop_agent.worker.job_driver.get_retention_service", return_value=retention):
            first = driver.tick()
            second = driver.tick()

        assert first == {"batches": 0, "tasks": 3, "cleaned": 5}
        assert second["cleaned"] == 0
        retention.cleanup.assert_called_once()

    def test_stop(self, driver):
        driver.stop()
        assert not driver.running

    def test_failed_batch_is_logged_and_stops_the_pass(self, driver):
        manager = MagicMock()
        manager.get_job_progress.return_value = ServiceResult.ok({"status": "running"})
        manager.process_next_batch.return_value = ServiceResult.fail(PersistenceError("db down"))

        assert driver._drive(manager) == 0
        manager.process_next_batch.reset_mock()

        with patch("shop_agent.worker.job_driver.logger") as logger:
            assert driver._drive(manager) == 0

        manager.process_next_batch.assert_called_once()
        logger.warning.assert_called_once_with(
            "Batch failed",
            error_code="PERSISTENCE_ERROR",
            error="A storage error occurred. Please try again later.",
        )
