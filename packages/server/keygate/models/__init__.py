# Imported so SQLModel.metadata is populated for Alembic and init_db.
from .base import IntIdMixin, TimestampMixin  # noqa: F401
from .account import Account  # noqa: F401
