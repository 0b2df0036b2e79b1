from app.models.order import Order
from app.models.order_file import OrderFile
from app.models.compliance_flag import ComplianceFlag
from app.models.order_event import OrderEvent

__all__ = ["Order", "OrderFile", "ComplianceFlag", "OrderEvent"]
