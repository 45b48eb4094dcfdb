"""Tests for CleanupTask retention pruning."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from guild_monitor.client.records import ApiCall
from guild_monitor.db.connection import get_connection
from guild_monitor.db.repositories.notification_repo import NotificationRepository
from guild_monitor.db.repositories.presence_repo import OnlineTransitionRepository
from guild_monitor.db.repositories.run_repo import TaskRunRepository
from guild_monitor.db.repositories.usage_repo import ApiUsageRepository
from guild_monitor.models.meta import TaskRun
from guild_monitor.models.player import OnlineTransition
from guild_monitor.monitoring.cleanup import CleanupTask
from guild_monitor.taxonomy.death_taxonomy import NotificationKind


def _seed_history(db_path, seeded, now):
    old_history = now - timedelta(days=8)
    recent_history = now - timedelta(days=6)
    old_log = now - timedelta(days=31)
    recent_log = now - timedelta(days=29)

    with get_connection(db_path) as conn:
        OnlineTransitionRepository(conn).insert_many([
            OnlineTransition(player_id=seeded.bob_id, level_at_transition=120, recorded_at=old_history),
            OnlineTransition(player_id=seeded.bob_id, level_at_transition=121, recorded_at=recent_history),
        ])
        usage = ApiUsageRepository(conn)
        usage.insert(ApiCall("/character/a", 200, 12, old_log))
        usage.insert(ApiCall("/character/b", 200, 15, recent_log))
        runs = TaskRunRepository(conn)
        runs.insert_run(TaskRun(run_slug="old", task_name="presence", status="success", started_at=old_log))
        runs.insert_run(TaskRun(run_slug="new", task_name="presence", status="success", started_at=recent_log))
        notes = NotificationRepository(conn)
        read_old = notes.insert(seeded.ally_guild_id, None, NotificationKind.MEMBER_DEATH, "a", old_log)
        notes.insert(seeded.ally_guild_id, None, NotificationKind.MEMBER_DEATH, "b", old_log)
        notes.mark_read([read_old])


def test_prunes_rows_past_retention(app_config, fake_client, seeded, db_path, build):
    now = build.T0
    _seed_history(db_path, seeded, now)
    fake_client.expired_evictions = 4
    task = CleanupTask(app_config, fake_client, clock=lambda: now)

    result = task.run_cleanup()

    assert result.transitions_deleted == 1
    assert result.usage_deleted == 1
    assert result.runs_deleted == 1
    assert result.notifications_deleted == 1
    assert result.cache_evicted == 4
    assert result.total == 8
    with get_connection(db_path) as conn:
        assert OnlineTransitionRepository(conn).count() == 1
        assert TaskRunRepository(conn).count() == 1
        unread = NotificationRepository(conn).get_unread(seeded.ally_guild_id)
    assert [n.message for n in unread] == ["b"]


def test_run_records_task_run(app_config, fake_client, seeded, db_path):
    run = asyncio.run(CleanupTask(app_config, fake_client).run())

    assert run.status == "success"
    with get_connection(db_path) as conn:
        latest = TaskRunRepository(conn).get_latest("cleanup")
    assert latest is not None
    assert latest.run_slug == run.run_slug
