"""
Per-record transformation failures.
"""


class TransformationError(Exception):
    """Raised when one record cannot be transformed; the batch continues."""

    def __init__(self, field_name: str, message: str):
        self.field_name = field_name
        self.message = message
        super().__init__(f'Field "{field_name}": {message}')
