"""
Repositories — one class per table, all SQL explicit.

Modules:
    base              — ``BaseRepository`` shared execution helpers.
    guild_repo        — ``GuildRepository``.
    player_repo       — ``TrackedPlayerRepository`` (watermarks, online flags).
    death_repo        — ``DeathEventRepository`` (dedup insert, stats).
    presence_repo     — ``OnlineTransitionRepository``.
    notification_repo — ``NotificationRepository`` (death outbox).
    usage_repo        — ``ApiUsageRepository``.
    run_repo          — ``TaskRunRepository``.
"""
