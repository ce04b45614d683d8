import logging
import os
from logging.config import fileConfig
from pathlib import Path

from flask import current_app
from alembic import context

config = context.config

# alembic.ini is optional; Flask-Migrate runs fine without one
if config.config_file_name and Path(config.config_file_name).exists():
    fileConfig(config.config_file_name)
else:
    logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("alembic.env")


def get_engine():
    # Flask-SQLAlchemy >= 3.x
    return current_app.extensions["migrate"].db.engine


config.set_main_option(
    "sqlalchemy.url",
    get_engine().url.render_as_string(hide_password=False).replace("%", "%%"),
)
target_db = current_app.extensions["migrate"].db

# Importing the package registers accounts, listings, payments, webhook events, plans
import app.models  # noqa: E402,F401

# Autogenerate never proposes dropping an index the models don't know about,
# unless it is named here (comma-separated).
_DROP_INDEX_ALLOWLIST = {
    name.strip()
    for name in os.getenv("ALEMBIC_DROP_INDEX_ALLOWLIST", "").split(",")
    if name.strip()
}


def _include_object(object, name, type_, reflected, compare_to):
    if type_ == "index" and reflected and compare_to is None:
        return name in _DROP_INDEX_ALLOWLIST
    return True


def run_migrations_offline():
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_db.metadata,
        literal_binds=True,
        compare_type=True,
        include_object=_include_object,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    def process_revision_directives(context_, revision, directives):
        if getattr(config.cmd_opts, "autogenerate", False):
            if directives[0].upgrade_ops.is_empty():
                directives[:] = []
                logger.info("No changes in schema detected.")

    conf_args = {
        **current_app.extensions["migrate"].configure_args,
        "compare_type": True,
        "include_object": _include_object,
        "target_metadata": target_db.metadata,
    }
    conf_args.setdefault("process_revision_directives", process_revision_directives)

    with get_engine().connect() as connection:
        context.configure(connection=connection, **conf_args)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
