"""Database engine, migrations and model helpers for routekit services."""

from __future__ import annotations

from collections.abc import Generator
from collections.abc import Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any
import re

from sqlalchemy import DateTime
from sqlalchemy import Integer
from sqlalchemy import create_engine
from sqlalchemy import func
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm import Session
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import sessionmaker

from routekit.core.config import DatabaseSettings
from routekit.core.config import resolve_database_settings
from routekit.core.logging import Logger
from routekit.db.migrations import run_migrations

_LOWER_UPPER = re.compile(r"([a-z\d])([A-Z])")
_ACRONYM_WORD = re.compile(r"([A-Z]+)([A-Z][a-z\d]+)")


def decamelize(name: str) -> str:
    """``UserProfile`` -> ``user_profile``, ``HTTPServer`` -> ``http_server``."""
    return _ACRONYM_WORD.sub(r"\1_\2", _LOWER_UPPER.sub(r"\1_\2", name)).lower()


def build_url(settings: DatabaseSettings) -> str | URL:
    """Connection URL from settings; ``connection_url`` wins over discrete parts."""
    if settings.connection_url:
        return settings.connection_url
    required = (settings.username, settings.password, settings.database, settings.host, settings.port)
    if not all(required):
        raise ValueError("INVALID_CONFIGURATION")
    return URL.create(
        settings.drivername,
        username=settings.username,
        password=settings.password,
        host=settings.host,
        port=settings.port,
        database=settings.database,
    )


def _is_primary_key(attribute: Any) -> bool:
    column = getattr(attribute, "column", attribute)
    return getattr(column, "primary_key", False) is True


class Database:
    """Process-wide persistence client: engine, sessions and declared models."""

    def __init__(self) -> None:
        self.engine: Engine | None = None
        self.session_factory: sessionmaker[Session] | None = None
        self.settings: DatabaseSettings | None = None
        self.models: dict[str, type[DeclarativeBase]] = {}
        self.Base: type[DeclarativeBase] = type("Base", (DeclarativeBase,), {})
        self.logger = Logger("Storage:Database")

    def init(self, settings: DatabaseSettings | None, service_uri: str) -> Engine:
        """Connect, verify the connection and apply pending migrations."""
        self.settings = resolve_database_settings(settings)
        self.engine = create_engine(
            build_url(self.settings),
            echo=self.settings.logging,
            pool_pre_ping=True,
        )
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            class_=Session,
        )

        with self.engine.connect() as connection:
            connection.execute(text("SELECT 1"))

        migrations_path = Path(self.settings.migrations_path)
        if not migrations_path.is_dir():
            self.logger.info(
                "no migrations directory, skipping migrations",
                {"migrations_path": str(migrations_path)},
            )
            return self.engine

        applied = run_migrations(self.engine, migrations_path, service_uri)
        self.logger.info(
            "database ready",
            {"service_uri": service_uri, "applied_migrations": applied},
        )
        return self.engine

    def define_entity(
        self,
        name: str,
        attributes: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> type[DeclarativeBase]:
        """Declare an ORM model named ``name`` on this database's declarative base."""
        if self.engine is None:
            raise RuntimeError("MISSING_DATABASE_CLIENT")

        options = dict(options or {})
        timestamps = options.pop("timestamps", True)
        namespace: dict[str, Any] = {"__tablename__": decamelize(name)}
        if not any(_is_primary_key(value) for value in attributes.values()):
            namespace["id"] = mapped_column(Integer, primary_key=True, autoincrement=True)
        namespace.update(attributes)
        if timestamps:
            namespace.setdefault(
                "created_at",
                mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now()),
            )
            namespace.setdefault(
                "updated_at",
                mapped_column(
                    DateTime(timezone=True),
                    nullable=False,
                    server_default=func.now(),
                    onupdate=func.now(),
                ),
            )
        namespace.update(options)

        model = type(name, (self.Base,), namespace)
        self.models[name] = model
        return model

    def register_models(
        self,
        models: Mapping[str, Mapping[str, Any]],
        options: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> dict[str, type[DeclarativeBase]]:
        """Define every model, taking options from ``options["<Name>Options"]``."""
        options = options or {}
        return {
            name: self.define_entity(name, attributes, options.get(f"{name}Options"))
            for name, attributes in models.items()
        }

    def get_session(self) -> Generator[Session, None, None]:
        """Yield a session for dependency injection."""
        session = self._session()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional session scope."""
        session = self._session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _session(self) -> Session:
        if self.session_factory is None:
            raise RuntimeError("MISSING_DATABASE_CLIENT")
        return self.session_factory()
