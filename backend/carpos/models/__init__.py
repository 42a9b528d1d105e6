from .shops import Shop, ServiceType
from .registers import CashRegister, Shift
from .payments import PaymentMethod, RegisterPaymentMethod, PaymentMethodTransaction
from .orders import ServiceOrder, ServiceOrderStaff
from .audit import AuditEvent

__all__ = [
    'Shop', 'ServiceType',
    'CashRegister', 'Shift',
    'PaymentMethod', 'RegisterPaymentMethod', 'PaymentMethodTransaction',
    'ServiceOrder', 'ServiceOrderStaff',
    'AuditEvent',
]
