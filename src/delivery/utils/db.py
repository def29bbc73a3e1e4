"""Schema setup for SQL-backed database providers.

The memory provider needs no schema; the worker calls ``setup_db`` at startup
so a PostgreSQL or SQLite deployment has its tables before the first job.
"""

import structlog
from protean.domain import Domain
from sqlalchemy import create_engine

logger = structlog.get_logger(__name__)

SQL_PROVIDERS = ("sqlite", "postgresql")


def setup_db(domain: Domain) -> list[str]:
    """Create missing tables on every SQL provider; return the provider names touched."""
    prepared = []
    with domain.domain_context():
        for name, provider in domain.providers.items():
            if provider.conn_info["provider"] not in SQL_PROVIDERS:
                continue

            # Tables are registered with the provider's metadata when a DAO is first built
            records = list(domain.registry.aggregates.values()) + list(domain.registry.entities.values())
            for record in records:
                if record.cls.meta_.provider == provider.name:
                    domain.repository_for(record.cls)._dao  # noqa: B018

            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.create_all(engine)
            engine.dispose()
            prepared.append(name)
            logger.info("database_schema_ready", provider=name, tables=sorted(provider._metadata.tables))
    return prepared
