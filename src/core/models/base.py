"""
Shared pydantic base for gateway configuration models.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class GatewayModel(BaseModel):
    """
    Base model accepting both snake_case and camelCase field names.

    Connector registry documents are written in camelCase
    (``sourceField``, ``retryPolicy``); Python code uses snake_case.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )
