"""Domain models for the property unit ingest service.

This package contains the configuration objects, parser output types and
processing results used throughout the application.
"""

from .config_models import AppConfig, MergeConfig, ParserConfig, SearchConfig, StoreConfig
from .error_record import ErrorRecord
from .parse_result import FieldDescriptor, ParseResult, Record
from .processing_result import UploadResult, UploadStatus

__all__ = [
    # Configuration models
    "AppConfig",
    "MergeConfig",
    "ParserConfig",
    "SearchConfig",
    "StoreConfig",
    # Parser output
    "FieldDescriptor",
    "ParseResult",
    "Record",
    # Processing models
    "ErrorRecord",
    "UploadResult",
    "UploadStatus",
]
