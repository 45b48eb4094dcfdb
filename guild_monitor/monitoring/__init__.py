"""
Guild Monitor — Monitoring package.

Keeps the engine alive and bounded over long runtimes.

Modules:
    health  — Health probe: storage, game-data API, pipeline liveness (self-healing).
    cleanup — Retention pruning of history, usage logs, runs and the response cache.
"""
