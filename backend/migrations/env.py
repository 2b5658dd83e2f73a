# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Alembic environment for the device-trust schema.

Migrations run on the application's own engine (``database.engine``), so
the connection string comes from Settings and SQLite gets the same
foreign-key pragma the app relies on for cascades.

    alembic -c etc/alembic.ini upgrade head
"""

import os
import sys

# backend/ must be importable for ``database`` and ``models.*``.
_BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from alembic import context  # noqa: E402

from core.config import settings  # noqa: E402
from database import Base, engine  # noqa: E402

# Every table must be registered on Base.metadata for --autogenerate.
import models.user          # noqa: F401, E402
import models.key_material  # noqa: F401, E402
import models.device        # noqa: F401, E402
import models.session       # noqa: F401, E402
import models.device_code   # noqa: F401, E402
import models.audit_log     # noqa: F401, E402


def run_migrations_online():
    with engine.connect() as conn:
        context.configure(
            connection=conn,
            target_metadata=Base.metadata,
            compare_type=True,
            # SQLite cannot ALTER most constraints in place.
            render_as_batch=engine.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


def run_migrations_offline():
    context.configure(
        url=settings.database_url,
        target_metadata=Base.metadata,
        literal_binds=True,
    )
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
