"""
Custom exceptions for the DCBus navigator
"""


class DcBusError(Exception):
    """Base exception for the DCBus navigator"""
    pass


class RouteDataError(DcBusError):
    """Raised when route definition files cannot be found or parsed"""
    pass
