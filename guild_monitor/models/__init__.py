"""
Pydantic domain models.

Modules:
    guild   — ``Guild`` (configured guild to monitor).
    player  — ``TrackedPlayer`` and ``OnlineTransition``.
    death   — ``Killer``, ``DeathEvent`` and ``classify_killers()``.
    meta    — ``TaskRun`` audit record for periodic task ticks.
"""
