"""
Persistencia append-only de observaciones de tasa.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from uuid import UUID

from sqlalchemy import update, exists, and_, or_
from sqlalchemy.orm import Session, aliased

from servistech.modules.rates.models import ExchangeRate, RateKind, RateProvenance

logger = logging.getLogger(__name__)

RATE_QUANTUM = Decimal('0.000001')


class RateStore:
    """Repositorio de ExchangeRate. Orden total por (observed_at, id)."""

    def __init__(self, db: Session):
        self.db = db

    def _ordered(self, kind: RateKind):
        return self.db.query(ExchangeRate).filter(
            ExchangeRate.rate_kind == kind
        ).order_by(ExchangeRate.observed_at.desc(), ExchangeRate.id.desc())

    def append(
        self,
        kind: RateKind,
        value: Decimal,
        provenance: RateProvenance,
        source: Optional[str] = None,
        source_price: Optional[Decimal] = None,
        updated_by: Optional[UUID] = None,
        observed_at: Optional[datetime] = None
    ) -> ExchangeRate:
        observation = ExchangeRate(
            rate_kind=kind,
            value=value.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP),
            provenance=provenance,
            source=source,
            source_price=source_price,
            updated_by=updated_by,
            observed_at=observed_at or datetime.now(timezone.utc)
        )
        self.db.add(observation)
        self.db.commit()
        self.db.refresh(observation)
        return observation

    def latest(self, kind: RateKind) -> Optional[ExchangeRate]:
        return self._ordered(kind).first()

    def current(self, kind: RateKind) -> Optional[ExchangeRate]:
        """
        Observación vigente: la última no-BACKUP más reciente que cualquier
        BACKUP; si la última es BACKUP, esa misma (valor desactualizado).

        Como BACKUP solo se asigna a la última observación, coincide con
        latest(); el llamador distingue el estado con `is_backup`.
        """
        return self.latest(kind)

    def history(self, kind: RateKind, limit: int = 30) -> List[ExchangeRate]:
        return self._ordered(kind).limit(limit).all()

    def mark_latest_as_backup(self, kind: RateKind) -> bool:
        """
        Marcar la última observación como BACKUP (compare-and-swap).

        Solo actualiza si sigue siendo la última y no está ya marcada, así
        dos fallos concurrentes no la marcan dos veces ni pisan una
        observación nueva.

        Returns:
            True si esta llamada hizo el cambio
        """
        latest = self.latest(kind)
        if latest is None or latest.provenance == RateProvenance.BACKUP:
            return False

        newer = aliased(ExchangeRate)
        newer_exists = exists().where(
            newer.rate_kind == kind,
            newer.id != latest.id,
            or_(
                newer.observed_at > latest.observed_at,
                and_(newer.observed_at == latest.observed_at, newer.id > latest.id)
            )
        )
        stmt = (
            update(ExchangeRate)
            .where(
                ExchangeRate.id == latest.id,
                ExchangeRate.provenance != RateProvenance.BACKUP,
                ~newer_exists
            )
            .values(provenance=RateProvenance.BACKUP)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()

        marked = result.rowcount == 1
        if marked:
            logger.warning(f"Rate {latest.id} ({kind.value}) marked as backup")
        return marked
