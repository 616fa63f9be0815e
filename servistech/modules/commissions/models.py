from servistech.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from servistech.common.mixins import TimestampMixin
import enum


class CommissionStatus(str, enum.Enum):
    PENDIENTE = "PENDIENTE"  # Calculada, por pagar
    APROBADA = "APROBADA"    # Revisada por gerencia
    PAGADA = "PAGADA"        # Incluida en nómina
    DEBITADA = "DEBITADA"    # Un contra-cargo la dejó en 0


class DebitReason(str, enum.Enum):
    DANO_ACCIDENTAL = "DANO_ACCIDENTAL"
    REPUESTO_ROTO = "REPUESTO_ROTO"
    ERROR_REPARACION = "ERROR_REPARACION"
    PERDIDA_EQUIPO = "PERDIDA_EQUIPO"
    OTRO = "OTRO"


# Motivos que exigen fotos como evidencia
EVIDENCE_REQUIRED_REASONS = {
    DebitReason.DANO_ACCIDENTAL,
    DebitReason.REPUESTO_ROTO,
    DebitReason.PERDIDA_EQUIPO,
}


class Commission(Base, TimestampMixin):
    __tablename__ = "commissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), nullable=False)
    technician_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    technician_role = Column(String(30), nullable=False)
    technician_name = Column(String(150), nullable=True)
    store_id = Column(UUID(as_uuid=True), nullable=True, index=True)

    gross_profit = Column(Numeric(15, 2), nullable=False, default=0)
    commission_rate = Column(Numeric(5, 2), nullable=False, default=0)  # % sobre utilidad o accesorios
    commission_amount = Column(Numeric(15, 2), nullable=False, default=0)
    flat_rate_amount = Column(Numeric(15, 2), nullable=False, default=0)
    debits_total = Column(Numeric(15, 2), nullable=False, default=0)
    net_amount = Column(Numeric(15, 2), nullable=False, default=0)

    period_month = Column(Integer, nullable=False)
    period_year = Column(Integer, nullable=False)

    status = Column(Enum(CommissionStatus), nullable=False, default=CommissionStatus.PENDIENTE)
    needs_review = Column(Boolean, nullable=False, default=False)  # Neto recortado a 0
    paid_at = Column(DateTime(timezone=True), nullable=True)
    paid_by = Column(UUID(as_uuid=True), nullable=True)

    debits = relationship(
        "CommissionDebit", back_populates="commission", cascade="all, delete-orphan",
        order_by="CommissionDebit.created_at"
    )

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_commission_order"),
    )


class CommissionDebit(Base, TimestampMixin):
    """Contra-cargo. Nunca se borra: una reversión se registra en la misma fila."""
    __tablename__ = "commission_debits"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    commission_id = Column(UUID(as_uuid=True), ForeignKey("commissions.id"), nullable=False, index=True)
    technician_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    reason = Column(Enum(DebitReason), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    evidence_required = Column(Boolean, nullable=False, default=False)
    photos = Column(JSON, nullable=True)

    approved_by = Column(UUID(as_uuid=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversed_by = Column(UUID(as_uuid=True), nullable=True)
    reversal_note = Column(Text, nullable=True)

    commission = relationship("Commission", back_populates="debits")

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None
