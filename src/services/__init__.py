from src.services import (
    negotiation_engine,
    negotiation_service,
    notification_service,
)


__all__ = [
    "negotiation_engine",
    "negotiation_service",
    "notification_service",
]
