# alembic/env.py
from logging.config import fileConfig
from sqlalchemy import engine_from_config
from sqlalchemy import pool
from alembic import context
import os
from dotenv import load_dotenv
from src.DB.base_class import Base
from src.Models.route_plan import RoutePlan
from src.Models.assigned_customer import AssignedCustomer
from src.Models.trip_coordinate import TripCoordinate
from src.Models.trip_completion_audit import TripCompletionAudit

_ = RoutePlan.__table__
_ = AssignedCustomer.__table__
_ = TripCoordinate.__table__
_ = TripCompletionAudit.__table__
"""
load environment variables from .env file
"""
load_dotenv()

config = context.config

"""
This is the Alembic Config object, which provides
access to the values within the .ini file in use.
"""
database_url = os.getenv("DATABASE_URL")
if not database_url:
    raise ValueError("DATABASE_URL is not set in the environment variables")

config.set_main_option("sqlalchemy.url", database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


target_metadata = Base.metadata


# ====================================================
# 🔧 Hook process_revision_directives
# ====================================================
def process_revision_directives(context, revision, directives):
    """
    Hook de lifecycle que modifica las migraciones generadas automáticamente.

    Descarta revisiones autogeneradas vacías: los triggers (completed_at,
    pg_notify) viven en SQL crudo y autogenerate no los ve, así que una
    revisión sin operaciones de tabla no aporta nada.
    """
    if not directives:
        return

    script = directives[0]
    if getattr(context.config.cmd_opts, "autogenerate", False) and script.upgrade_ops.is_empty():
        directives[:] = []
        print("ℹ️  [PROCESS] No schema changes detected - revision not generated")


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=False,
        process_revision_directives=process_revision_directives,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=False,
            process_revision_directives=process_revision_directives,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
