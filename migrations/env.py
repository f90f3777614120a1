import importlib
import logging
import pkgutil
from logging.config import fileConfig

from alembic import context
from flask import current_app

config = context.config

if config.config_file_name:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

migrate_ext = current_app.extensions["migrate"]
engine = migrate_ext.db.engine
config.set_main_option("sqlalchemy.url", engine.url.render_as_string(hide_password=False).replace("%", "%%"))


def _load_models():
    """Import every orgassess.models module so autogenerate sees the whole schema."""
    import orgassess.models as models_pkg
    for mod in pkgutil.iter_modules(models_pkg.__path__):
        importlib.import_module(f"orgassess.models.{mod.name}")


def _keep_object(obj, name, type_, reflected, compare_to):
    # indexes created by hand in the database are left alone
    if type_ == "index" and reflected and compare_to is None:
        return False
    return True


def _skip_empty_revision(ctx, revision, directives):
    if getattr(config.cmd_opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info("No changes in schema detected.")


def _options(**extra):
    _load_models()
    return {
        "target_metadata": migrate_ext.db.metadata,
        "compare_type": True,
        "compare_server_default": True,
        "include_object": _keep_object,
        # SQLite cannot ALTER most constraints in place
        "render_as_batch": engine.dialect.name == "sqlite",
        **extra,
    }


def run_migrations_offline():
    context.configure(url=config.get_main_option("sqlalchemy.url"), literal_binds=True, **_options())
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    args = dict(migrate_ext.configure_args)
    args.setdefault("process_revision_directives", _skip_empty_revision)
    with engine.connect() as connection:
        context.configure(connection=connection, **_options(**args))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
