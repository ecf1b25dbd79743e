"""Tests for tasks.py — synchronous fallback and enqueue wrapper."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import redis


def _sample_task(x, y):
    """A simple function for testing enqueue."""
    return x + y


def _sample_task_with_kwargs(x, multiplier=1):
    return x * multiplier


class TestSynchronousFallback:
    def test_enqueue_runs_sync_without_redis(self, app):
        from tasks import enqueue
        assert enqueue(_sample_task, 3, 4) == 7

    def test_enqueue_with_kwargs(self, app):
        from tasks import enqueue
        assert enqueue(_sample_task_with_kwargs, 3, multiplier=5) == 15

    def test_is_async_available_false_without_redis(self, app):
        from tasks import is_async_available
        assert is_async_available() is False


class TestInitTasks:
    def test_unreachable_redis_falls_back(self, app, monkeypatch):
        import tasks

        monkeypatch.setattr(tasks, "_queue", None)
        conn = MagicMock()
        conn.ping.side_effect = redis.ConnectionError("refused")
        app.config["REDIS_URL"] = "redis://invalid-host:9999"
        with patch("tasks.redis.Redis.from_url", return_value=conn):
            tasks.init_tasks(app)
        assert tasks.is_async_available() is False

    def test_reachable_redis_uses_queue(self, app, monkeypatch):
        import tasks

        monkeypatch.setattr(tasks, "_queue", None)
        app.config["REDIS_URL"] = "redis://localhost:6379/0"
        with patch("tasks.redis.Redis.from_url", return_value=MagicMock()), \
                patch("tasks.Queue") as mock_queue:
            tasks.init_tasks(app)
        assert tasks.is_async_available() is True

        job = tasks.enqueue(_sample_task, 1, 2)
        assert job is mock_queue.return_value.enqueue.return_value
        mock_queue.return_value.enqueue.assert_called_once_with(_sample_task, 1, 2)

    def test_enqueue_failure_runs_inline(self, monkeypatch):
        import tasks

        queue = MagicMock()
        queue.enqueue.side_effect = redis.ConnectionError("gone")
        monkeypatch.setattr(tasks, "_queue", queue)
        assert tasks.enqueue(_sample_task, 2, 2) == 4
