from .config import GatewayConfig
from .gateway import Gateway, GatewayResponse
from .models import ModelDescriptor, ModelFamily, resolve
from .pricing import CostEstimate, cost

__all__ = [
    "CostEstimate",
    "Gateway",
    "GatewayConfig",
    "GatewayResponse",
    "ModelDescriptor",
    "ModelFamily",
    "cost",
    "resolve",
]
