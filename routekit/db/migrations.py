"""Run pending Alembic revisions without a project-level ``env.py``."""

from __future__ import annotations

from pathlib import Path

from alembic.config import Config
from alembic.runtime.environment import EnvironmentContext
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Connection
from sqlalchemy.engine import Engine


def migration_table_name(service_uri: str) -> str:
    return f"migrations_{service_uri}"


def run_migrations(engine: Engine, migrations_path: str | Path, service_uri: str) -> list[str]:
    """Upgrade to ``head`` and return the applied revision ids, oldest first.

    Revisions live under ``<migrations_path>/versions``; the version table is
    per service so several services can share one database.
    """
    config = Config()
    config.set_main_option("script_location", str(migrations_path))
    script = ScriptDirectory.from_config(config)
    version_table = migration_table_name(service_uri)

    with engine.connect() as connection:
        before = set(_current_heads(connection, version_table))

    def upgrade(revision, context):  # noqa: ANN001
        return script._upgrade_revs("head", revision)

    with EnvironmentContext(config, script, fn=upgrade, destination_rev="head") as env:
        with engine.begin() as connection:
            env.configure(connection=connection, version_table=version_table)
            with env.begin_transaction():
                env.run_migrations()

    with engine.connect() as connection:
        after = _current_heads(connection, version_table)
    return _applied_since(script, before, after)


def _current_heads(connection: Connection, version_table: str) -> tuple[str, ...]:
    context = MigrationContext.configure(connection, opts={"version_table": version_table})
    return context.get_current_heads()


def _applied_since(script: ScriptDirectory, before: set[str], after: tuple[str, ...]) -> list[str]:
    applied: list[str] = []
    for head in after:
        for revision in script.iterate_revisions(head, "base"):
            if revision.revision in before:
                break
            applied.append(revision.revision)
    return list(reversed(applied))
