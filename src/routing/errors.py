"""
Delivery failures.
"""


class DeliveryError(Exception):
    """Raised when one target could not accept a record."""

    def __init__(self, target_type: str, endpoint: str, message: str, status_code: int | None = None):
        self.target_type = target_type
        self.endpoint = endpoint
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{target_type}] {endpoint}: {message}")
