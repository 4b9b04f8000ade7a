"""Order execution layer -- paper and live gateways behind one interface."""

from hlfunding.execution.gateway import OrderGateway
from hlfunding.execution.live_gateway import LiveOrderGateway
from hlfunding.execution.paper_gateway import PaperOrderGateway

__all__ = ["LiveOrderGateway", "OrderGateway", "PaperOrderGateway"]
