"""
IntegrationEndpoint model: the per-source configuration supplied by the
connector registry.
"""

from enum import Enum
from typing import Any

from pydantic import Field

from .base import GatewayModel
from .file_monitor import FileMonitorConfig
from .processing_config import DataProcessingConfig
from .routing import RoutingConfig


class IntegrationType(str, Enum):
    OCR_ANPR = "ocr_anpr"
    GPS_GLONASS = "gps_glonass"
    MQTT_BROKER = "mqtt_broker"
    RFID_READER = "rfid_reader"
    EDI_GATEWAY = "edi_gateway"
    ERP_1C = "erp_1c"
    WEIGHBRIDGE = "weighbridge"
    CAMERA_SYSTEM = "camera_system"
    CUSTOM_API = "custom_api"
    DATABASE = "database"
    FILE_WATCHER = "file_watcher"


class IntegrationEndpoint(GatewayModel):
    """
    A configured external integration (read-only to the gateway core).

    Attributes:
        id: Unique identifier, used as source id in logs, metrics and headers
        name: Human-readable name
        type: Integration kind
        is_active: Inactive endpoints are never started
        data_processing_config: Transformation engine configuration
        routing_config: Router configuration
        file_monitor_config: File event source configuration (file watchers)
        tags: Free-form labels
        metadata: Free-form metadata
    """

    id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1)
    type: IntegrationType = IntegrationType.CUSTOM_API
    is_active: bool = True
    data_processing_config: DataProcessingConfig = Field(default_factory=DataProcessingConfig)
    routing_config: RoutingConfig = Field(default_factory=RoutingConfig)
    file_monitor_config: FileMonitorConfig | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        **GatewayModel.model_config,
        "json_schema_extra": {
            "example": {
                "id": "edi-partner-maersk",
                "name": "Maersk EDI drop",
                "type": "file_watcher",
                "dataProcessingConfig": {
                    "inputFormat": "csv",
                    "outputFormat": "json",
                    "transformationRules": [
                        {"sourceField": "qty", "targetField": "quantity",
                         "transformation": "number_format", "transformationParams": {"decimals": 0},
                         "required": True}
                    ]
                },
                "routingConfig": {
                    "targets": [
                        {"type": "webhook", "endpoint": "https://erp.example.com/hooks/containers",
                         "retryPolicy": {"maxAttempts": 3, "backoffMultiplier": 2, "initialDelay": 1000}}
                    ]
                }
            }
        },
    }
