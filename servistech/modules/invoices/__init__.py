"""
Módulo de Facturación Multimoneda

Factura en USD con equivalente en bolívares según la tasa vigente:
- Líneas de servicio, repuesto y accesorio
- IGTF del 3% sobre el subtotal cuando se paga en efectivo USD
- Descuento que nunca deja el total negativo
- Pagos parciales con validación de saldo y bloqueo de fila
- Estados: PENDING -> PARTIAL -> PAID, o CANCELLED si no está pagada

Métodos de pago soportados:
- ZELLE, CASH_USD, CASH_VES, PAGO_MOVIL, BINANCE, TRANSFER
"""

from .models import Invoice, InvoiceLineItem, Payment, InvoiceStatus, InvoiceItemType, PaymentMethod
from .calculator import InvoiceCalculator, InvoiceTotals
from .service import InvoiceService

__all__ = [
    "Invoice",
    "InvoiceLineItem",
    "Payment",
    "InvoiceStatus",
    "InvoiceItemType",
    "PaymentMethod",
    "InvoiceCalculator",
    "InvoiceTotals",
    "InvoiceService",
]
