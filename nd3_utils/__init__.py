"""Utility functions and models for the ND3 capture pipeline."""

from .naming import (
    decode_capture_parameters,
    parse_timestamp,
    replace_extension,
    resolution_for_filename,
)
from .validation import (
    CaptureJob,
    CaptureParameters,
    JobStage,
    Nd3Metadata,
    ProcessedFileSet,
)

__all__ = [
    "decode_capture_parameters",
    "parse_timestamp",
    "replace_extension",
    "resolution_for_filename",
    "CaptureJob",
    "CaptureParameters",
    "JobStage",
    "Nd3Metadata",
    "ProcessedFileSet",
]
