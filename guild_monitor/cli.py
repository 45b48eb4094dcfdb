"""
Guild Monitor — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, guild sync, one task tick, the daemon...).
  5. Report result to stdout.

Install and run::

    pip install -e .
    guild-monitor --help
    guild-monitor init-db
    guild-monitor validate-config
    guild-monitor sync-all
    guild-monitor run-once deaths
    guild-monitor run
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="guild-monitor",
    help="Tibia guild monitor — death and online-status tracking engine.",
    add_completion=False,
)

_RUN_ONCE_TASKS = ("deaths", "presence", "cleanup", "health")


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from guild_monitor.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from guild_monitor.utils.logging import configure_logging
    configure_logging(config.logging)


def _run_with_supervisor(config, db_path: Optional[str], action):
    """Build a supervisor, await ``action(supervisor)``, then close it."""
    from guild_monitor.supervisor import Supervisor

    async def _main():
        supervisor = Supervisor(config, db_path=db_path)
        try:
            return await action(supervisor)
        finally:
            await supervisor.aclose()

    return asyncio.run(_main())


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and upsert configured guilds.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    """
    from guild_monitor.db.connection import open_unit
    from guild_monitor.db.repositories.guild_repo import GuildRepository
    from guild_monitor.db.schema import ALL_TABLE_NAMES, apply_schema
    from guild_monitor.models.guild import Guild

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with open_unit(config.database, target_path) as conn:
        apply_schema(conn)
        repo = GuildRepository(conn)
        for seed in config.guilds:
            guild_id = repo.upsert(
                Guild(name=seed.name, world=seed.world, guild_type=seed.guild_type)
            )
            typer.echo(f"  Guild {seed.name} ({seed.world}, {seed.guild_type}) → id {guild_id}")

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  API base URL:     {config.api.base_url}")
    typer.echo(f"  Concurrency:      {config.batch.concurrency}")
    typer.echo(
        f"  Intervals (s):    deaths={config.scheduler.death_interval_seconds:g} "
        f"presence={config.scheduler.presence_interval_seconds:g} "
        f"cleanup={config.scheduler.cleanup_interval_seconds:g} "
        f"health={config.scheduler.health_interval_seconds:g}"
    )
    typer.echo(f"  Seeded guilds:    {len(config.guilds)}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("run")
def run(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Start the supervisor and every periodic task. Blocks until Ctrl-C."""
    from guild_monitor.supervisor import Supervisor

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        asyncio.run(Supervisor(config, db_path=db_path).run_forever())
    except KeyboardInterrupt:
        pass
    typer.echo("[OK] Supervisor stopped.")


@app.command("sync-guild")
def sync_guild(
    guild_id: int = typer.Argument(..., help="Guild id (see init-db output)."),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Fetch one guild's roster now and upsert its members as tracked players."""
    from guild_monitor.exceptions import GuildMonitorError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        result = _run_with_supervisor(config, db_path, lambda s: s.sync_guild(guild_id))
    except GuildMonitorError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(
        f"[OK] {result.guild_name}: {result.total} members | "
        f"created={result.created} updated={result.updated} failed={result.failed}"
    )


@app.command("sync-all")
def sync_all(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Sync every active guild's roster."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    results = _run_with_supervisor(
        config, db_path, lambda s: s.guild_sync.sync_all_guilds()
    )
    for result in results:
        typer.echo(
            f"  {result.guild_name}: {result.total} members | "
            f"created={result.created} updated={result.updated} failed={result.failed}"
        )
    typer.echo(f"[OK] {len(results)} guild(s) synced.")


@app.command("run-once")
def run_once(
    task: str = typer.Argument(..., help="One of: deaths, presence, cleanup, health."),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Run a single tick of one task and print its outcome."""
    if task not in _RUN_ONCE_TASKS:
        typer.echo(
            f"[ERROR] Unknown task '{task}'. Choose from: {', '.join(_RUN_ONCE_TASKS)}.",
            err=True,
        )
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if task == "health":
        report = _run_with_supervisor(config, db_path, lambda s: s.run_health_probe())
        for check in report.checks:
            detail = f" ({check.detail})" if check.detail else ""
            typer.echo(f"  {check.name:<9} {check.status}{detail}")
        typer.echo(f"Overall: {report.overall}")
        if report.overall != "healthy":
            raise typer.Exit(code=1)
        return

    def _pick(supervisor):
        return {
            "deaths": supervisor.pipeline,
            "presence": supervisor.presence,
            "cleanup": supervisor.cleanup,
        }[task].run()

    try:
        run_record = _run_with_supervisor(config, db_path, _pick)
    except Exception as exc:
        typer.echo(f"[ERROR] {task} failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] {task}: {run_record.rows_processed} row(s) | run_slug={run_record.run_slug}")


@app.command("death-stats")
def death_stats(
    guild_id: int = typer.Argument(..., help="Guild id."),
    days: int = typer.Option(7, "--days", help="Look-back window in days."),
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config."
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file."
    ),
) -> None:
    """Print PVP/PVE death statistics for a guild."""
    from guild_monitor.db.connection import open_unit
    from guild_monitor.db.repositories.death_repo import DeathEventRepository
    from guild_monitor.utils.time_utils import days_ago

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with open_unit(config.database, db_path) as conn:
        stats = DeathEventRepository(conn).get_death_stats(guild_id, days_ago(days))

    typer.echo(f"Deaths in the last {days} day(s) for guild {guild_id}:")
    typer.echo(f"  Total: {stats.total}")
    typer.echo(f"  PVP:   {stats.pvp} ({stats.pvp_percentage}%)")
    typer.echo(f"  PVE:   {stats.pve}")
    for level, count in stats.by_level:
        typer.echo(f"    level {level:>4}: {count}")


if __name__ == "__main__":
    app()
