from __future__ import annotations

from ..models.processing_result import UploadResult

"""SUMMARY line rendering for one upload."""

__all__ = [
    "format_seconds",
    "render_summary_line",
]


def format_seconds(value: float) -> str:
    """Render seconds without scientific notation; integral values as ints."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return f"{value:.3f}".rstrip('0').rstrip('.')


def render_summary_line(result: UploadResult) -> str:
    """Render the SUMMARY line.

    Format:
    SUMMARY file={name} status={status} rows={parsed} merged={merged}
    dropped={dropped} stored={stored} indexed={indexed}
    index_failed={failed} elapsed_sec={elapsed}

    File names containing whitespace are rendered with the whitespace
    replaced by ``_`` so the line stays splittable on spaces.
    """
    name = "_".join(result.file_name.split()) or "-"
    return (
        f"SUMMARY file={name} "
        f"status={result.status.value} "
        f"rows={result.parsed_rows} "
        f"merged={result.merged_records} "
        f"dropped={result.dropped_records} "
        f"stored={result.stored_rows} "
        f"indexed={result.indexed_documents} "
        f"index_failed={result.index_failures} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )
