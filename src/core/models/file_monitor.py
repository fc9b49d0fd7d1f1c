"""
File monitor configuration models.

Unknown processor kinds, invalid regexes and contradictory post-processing
flags are rejected here, when the configuration is loaded, rather than
when the first file arrives.
"""

import re
from enum import Enum
from typing import Literal

from pydantic import Field, field_validator, model_validator

from .base import GatewayModel


class FileProcessorKind(str, Enum):
    """Closed set of file type handlers."""

    CSV = "csv"
    XML = "xml"
    JSON = "json"
    TEXT = "text"
    IMAGE = "image"
    GENERIC = "generic"


class WatchPath(GatewayModel):
    """
    One directory to watch.

    Attributes:
        path: Directory path; must exist when monitoring starts
        pattern: Glob matched against file names ("*.csv")
        recursive: Also watch subdirectories
        enabled: Disabled entries are ignored
    """

    path: str = Field(..., min_length=1)
    pattern: str = "*"
    recursive: bool = False
    enabled: bool = True


class FileTypeRule(GatewayModel):
    """
    How files with one extension are read and handled.

    Attributes:
        extension: Extension including the dot, compared case-insensitively
        processor: Handler kind
        encoding: utf8 (text), binary (bytes) or base64 (text)
        max_size: Largest accepted file in bytes
    """

    extension: str = Field(..., min_length=1)
    processor: FileProcessorKind = FileProcessorKind.GENERIC
    encoding: Literal["utf8", "binary", "base64"] = "utf8"
    max_size: int = Field(10 * 1024 * 1024, gt=0)

    @field_validator("extension")
    @classmethod
    def normalize_extension(cls, v: str) -> str:
        v = v.lower()
        return v if v.startswith(".") else f".{v}"

    @field_validator("processor", mode="before")
    @classmethod
    def normalize_processor(cls, v):
        if v == "txt":
            return FileProcessorKind.TEXT
        return v


class NamingRules(GatewayModel):
    """File name patterns (regular expressions, searched anywhere in the name)."""

    require_pattern: str | None = None
    exclude_pattern: str | None = None

    @field_validator("require_pattern", "exclude_pattern")
    @classmethod
    def check_regex(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid regex pattern '{v}': {e}")
        return v


class PostProcessingRules(GatewayModel):
    """
    What happens to a file after processing.

    On success the file is moved to ``processed_path`` or deleted; on final
    failure it is moved to ``error_path``. A backup copy is taken first when
    ``backup_original`` is set.
    """

    move_after_processing: bool = False
    processed_path: str | None = None
    error_path: str | None = None
    backup_original: bool = False
    backup_path: str | None = None
    delete_after_processing: bool = False

    @model_validator(mode="after")
    def check_consistency(self) -> "PostProcessingRules":
        if self.move_after_processing and self.delete_after_processing:
            raise ValueError("move_after_processing and delete_after_processing are mutually exclusive")
        if self.move_after_processing and not self.processed_path:
            raise ValueError("move_after_processing requires processed_path")
        return self


class ProcessingRules(GatewayModel):
    file_types: list[FileTypeRule] = Field(default_factory=list)
    naming: NamingRules = Field(default_factory=NamingRules)
    processing: PostProcessingRules = Field(default_factory=PostProcessingRules)

    def file_type_for(self, extension: str) -> FileTypeRule | None:
        extension = extension.lower()
        for file_type in self.file_types:
            if file_type.extension == extension:
                return file_type
        return None


class MonitorSettings(GatewayModel):
    """
    Timing and concurrency settings (all durations in ms).

    Attributes:
        poll_interval: How often the size of a pending file is re-checked
        ignore_initial: Skip files already present at start
        stability_threshold: How long a size must stay unchanged
        max_concurrent_files: Upper bound on jobs in ``processing``
        retry_attempts: Total attempts per file before it is moved to error
        retry_delay: Fixed delay between attempts
    """

    poll_interval: int = Field(1000, gt=0)
    ignore_initial: bool = True
    stability_threshold: int = Field(2000, ge=0)
    max_concurrent_files: int = Field(5, ge=1)
    retry_attempts: int = Field(3, ge=1)
    retry_delay: int = Field(5000, ge=0)


class FileMonitorConfig(GatewayModel):
    """Complete file monitor configuration for one endpoint."""

    watch_paths: list[WatchPath] = Field(..., min_length=1)
    processing_rules: ProcessingRules = Field(default_factory=ProcessingRules)
    settings: MonitorSettings = Field(default_factory=MonitorSettings)

    @property
    def enabled_paths(self) -> list[WatchPath]:
        return [p for p in self.watch_paths if p.enabled]
