"""
Excepciones de dominio del núcleo financiero.

Los calculadores puros lanzan estas excepciones; los servicios las traducen a
HTTPException con un detalle estructurado.
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class FinancialCoreError(Exception):
    """Base para todos los errores del núcleo financiero."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"message": self.message}
        for key, value in self.details.items():
            detail[key] = str(value) if isinstance(value, Decimal) else value
        return detail


class BusinessRuleViolation(FinancialCoreError):
    """Una operación viola una regla de negocio (monto, estado, descuento)."""

    def __init__(self, message: str, constraint: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.constraint = constraint

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["constraint"] = self.constraint
        return detail


class PaymentExceedsBalanceError(BusinessRuleViolation):
    """El pago supera el saldo pendiente de la factura."""

    def __init__(self, amount: Decimal, remaining: Decimal):
        self.amount = amount
        self.remaining = remaining
        self.excess = amount - remaining
        super().__init__(
            f"El pago de ${amount} excede el saldo pendiente de ${remaining}",
            constraint="payment_within_balance",
            details={"amount": amount, "remaining": remaining, "excess": self.excess},
        )


class InvalidStatusTransitionError(BusinessRuleViolation):
    """Transición de estado no permitida."""

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"No se puede pasar de {current} a {target}",
            constraint="status_transition",
            details={"current_status": current, "target_status": target},
        )


class InvalidRateValueError(BusinessRuleViolation):
    """Una tasa debe ser un número finito mayor a cero."""

    def __init__(self, value: Any):
        super().__init__(
            f"Tasa inválida: {value}",
            constraint="rate_positive",
            details={"value": str(value)},
        )


class ConfigurationError(FinancialCoreError):
    """Configuración que impide calcular (p. ej. margen deseado >= 1)."""


class RateSourceError(FinancialCoreError):
    """La fuente externa de la tasa no respondió o devolvió un valor inválido."""
