from .auth import User, SessionToken
from .customers import Customer
from .inventory import Product
from .reservations import Reservation, Payment
from .costs import Cost
from .approvals import ApprovalRequest

__all__ = [
    'User', 'SessionToken',
    'Customer',
    'Product',
    'Reservation', 'Payment',
    'Cost',
    'ApprovalRequest',
]
