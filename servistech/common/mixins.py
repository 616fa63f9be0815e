"""
Common mixins for store-scoped financial models
"""
from sqlalchemy import Column, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func


class StoreMixin:
    """Mixin for models that belong to a single store (sucursal)"""

    store_id = Column(UUID(as_uuid=True), nullable=False, index=True)


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
