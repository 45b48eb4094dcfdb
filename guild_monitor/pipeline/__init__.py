"""
Monitoring tasks.

Modules:
    base            — ``MonitorTask`` ABC: one audited ``TaskRun`` per tick.
    death_ingestion — ``DeathIngestionPipeline`` (watermark-based death sync).
    presence        — ``PresenceReconciler`` (offline-then-flip online status).
    guild_sync      — ``GuildSynchronizer`` (roster → tracked players).
"""
