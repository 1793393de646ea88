from typing import Optional

from core.config import settings
from .base_vendor_gateway import BaseVendorGateway
from .simulated_vendor_gateway import SimulatedVendorGateway

_gateway: Optional[BaseVendorGateway] = None


def get_vendor_gateway() -> BaseVendorGateway:
    """
    Returns the configured vendor gateway instance.
    """
    global _gateway
    if _gateway is None:
        provider = settings.VENDOR_PROVIDER
        if provider == "simulated":
            _gateway = SimulatedVendorGateway()
        else:
            raise ValueError(f"Unsupported vendor provider: {provider}")
    return _gateway


def set_vendor_gateway(gateway: Optional[BaseVendorGateway]) -> None:
    global _gateway
    _gateway = gateway
