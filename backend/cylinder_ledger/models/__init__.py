from .tenancy import Organization
from .catalog import Driver, CylinderSize, Product
from .inventory import InventoryTransaction, InventoryRecord
from .sales import Settlement, SaleRecord
from .receivables import ReceivableRecord, CustomerReceivable, DriverCylinderSizeBaseline
from .tasks import RecomputeTask
from .audit import AuditEvent

__all__ = [
    'Organization',
    'Driver', 'CylinderSize', 'Product',
    'InventoryTransaction', 'InventoryRecord',
    'Settlement', 'SaleRecord',
    'ReceivableRecord', 'CustomerReceivable', 'DriverCylinderSizeBaseline',
    'RecomputeTask',
    'AuditEvent',
]
