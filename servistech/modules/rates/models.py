from servistech.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Enum, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import enum


class RateKind(str, enum.Enum):
    OFFICIAL = "official"    # Tasa BCV
    PARALLEL = "parallel"    # Estimación de mercado (USDT)


class RateProvenance(str, enum.Enum):
    AUTOMATIC = "automatic"  # Obtenida por el sincronizador
    MANUAL = "manual"        # Cargada por un administrador
    BACKUP = "backup"        # Última conocida, la fuente falló después


class ExchangeRate(Base):
    """
    Observación de tasa USD -> VES.

    Histórico append-only: la única mutación permitida es marcar la última
    observación de un tipo como BACKUP cuando la fuente falla.
    """
    __tablename__ = "exchange_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rate_kind = Column(Enum(RateKind), nullable=False, index=True)
    value = Column(Numeric(18, 6), nullable=False)  # VES por 1 USD
    provenance = Column(Enum(RateProvenance), nullable=False, default=RateProvenance.AUTOMATIC)
    observed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Precio USDT usado para la tasa paralela
    source_price = Column(Numeric(18, 6), nullable=True)
    source = Column(String(50), nullable=True)
    updated_by = Column(UUID(as_uuid=True), nullable=True)

    __table_args__ = (
        Index("idx_exchange_rates_kind_observed", "rate_kind", "observed_at"),
    )

    @property
    def is_backup(self) -> bool:
        return self.provenance == RateProvenance.BACKUP
