from .http_transport import DeliveryClient, classify_status

__all__ = ["DeliveryClient", "classify_status"]
