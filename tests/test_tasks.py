"""Tests for the arq enqueue helpers."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from backoffice.tasks import enqueue_coupon_notification, enqueue_task, get_redis_pool


class TestTasks:
    @pytest.mark.asyncio
    async def test_get_redis_pool(self):
        mock_pool = MagicMock()

        with patch("backoffice.tasks.create_pool", new_callable=AsyncMock) as mock_create:
            mock_create.return_value = mock_pool

            assert await get_redis_pool() == mock_pool
            mock_create.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_task(self):
        mock_job = MagicMock()
        mock_pool = MagicMock()
        mock_pool.enqueue_job = AsyncMock(return_value=mock_job)
        mock_pool.close = AsyncMock()

        with patch("backoffice.tasks.get_redis_pool", new_callable=AsyncMock) as mock_get_pool:
            mock_get_pool.return_value = mock_pool

            result = await enqueue_task("my_task", "arg1", kwarg1="value1")

        assert result == mock_job
        mock_pool.enqueue_job.assert_called_once_with("my_task", "arg1", kwarg1="value1")
        mock_pool.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_task_closes_pool_on_error(self):
        mock_pool = MagicMock()
        mock_pool.enqueue_job = AsyncMock(side_effect=ConnectionError("Redis error"))
        mock_pool.close = AsyncMock()

        with patch("backoffice.tasks.get_redis_pool", new_callable=AsyncMock) as mock_get_pool:
            mock_get_pool.return_value = mock_pool

            with pytest.raises(ConnectionError):
                await enqueue_task("my_task")

        mock_pool.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_enqueue_coupon_notification(self):
        with patch("backoffice.tasks.enqueue_task", new_callable=AsyncMock) as mock_enqueue:
            await enqueue_coupon_notification("abc")

        mock_enqueue.assert_awaited_once_with("send_coupon_notification_task", "abc")
