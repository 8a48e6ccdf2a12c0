from .stores import Store
from .auth import User, Role, RoleCapability, SessionToken
from .customers import Customer
from .catalog import Product, ProductVariant
from .inventory import InventoryRecord
from .sales import Sale, SaleLine, SalePayment
from .sourcing import SourcedItem
from .documents import DocumentSequence

__all__ = [
    'Store',
    'User', 'Role', 'RoleCapability', 'SessionToken',
    'Customer',
    'Product', 'ProductVariant',
    'InventoryRecord',
    'Sale', 'SaleLine', 'SalePayment',
    'SourcedItem',
    'DocumentSequence',
]
