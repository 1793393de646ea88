# backend/routes/vendor_services/__init__.py
from .base_vendor_gateway import BaseVendorGateway, VendorSendResult
from .simulated_vendor_gateway import SimulatedVendorGateway, VENDOR_ERRORS
from .vendor_gateway_factory import get_vendor_gateway, set_vendor_gateway

__all__ = [
    'BaseVendorGateway',
    'VendorSendResult',
    'SimulatedVendorGateway',
    'VENDOR_ERRORS',
    'get_vendor_gateway',
    'set_vendor_gateway',
]
