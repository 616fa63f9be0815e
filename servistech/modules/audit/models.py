from servistech.database.database import Base
from sqlalchemy import Column, String, DateTime, JSON, Enum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from uuid import uuid4
import enum


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    RATE_MANUAL = "RATE_MANUAL"
    COMMISSION_PAY = "COMMISSION_PAY"
    DEBIT_APPLY = "DEBIT_APPLY"
    DEBIT_REVERSE = "DEBIT_REVERSE"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    action = Column(Enum(AuditAction), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)  # rate, invoice, commission, debit
    entity_id = Column(String(100), nullable=False, index=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    store_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
