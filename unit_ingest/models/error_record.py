from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the upload error log.

Supports row=-1 as a sentinel for upload-level errors where no single source
row is to blame (unsupported format, store failure, ...).

The serialized shape is fixed by ``unit_ingest/config/error_log_schema.json``.
"""

__all__ = [
    "ErrorRecord",
    "UPLOAD_LEVEL_ROW",
]

UPLOAD_LEVEL_ROW = -1


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: uploaded file name
        row: 1-based source row number, -1 when not row specific
        error_type: classification in UPPER_SNAKE_CASE
        message: human readable detail
    """
    timestamp: str
    file: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
