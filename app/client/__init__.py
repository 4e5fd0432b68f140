from .checkout_client import (
    ApiError,
    CheckoutClient,
    ClientError,
    DuplicateSubmission,
    NetworkError,
)

__all__ = [
    "ApiError",
    "CheckoutClient",
    "ClientError",
    "DuplicateSubmission",
    "NetworkError",
]
