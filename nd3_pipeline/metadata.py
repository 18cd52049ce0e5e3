"""
Metadata Pipeline Stage

Classifies the files of a processed capture directory and writes meta.json.
"""

from pathlib import Path
from typing import Iterable, Optional
from rich.console import Console

from nd3_utils.naming import UNKNOWN_COMMAND, decode_capture_parameters, parse_timestamp
from nd3_utils.validation import (
    CaptureParameters,
    CaptureTimestamp,
    MetadataOutputs,
    Nd3Metadata,
    ProcessedFileSet,
)

console = Console()

SIDECAR_NAME = "meta.json"


class MetadataWriteWarning(Exception):
    """meta.json could not be written."""
    pass


def classify_files(names: Iterable[str]) -> ProcessedFileSet:
    """Partition a directory listing by naming convention."""
    return ProcessedFileSet.from_names(n for n in names if n != SIDECAR_NAME)


def build_metadata(
    original_file_name: str,
    processed_path: Path,
    file_set: ProcessedFileSet,
) -> Nd3Metadata:
    """
    Assemble the metadata record for a classified directory.

    Depth parameters are decoded from the converted depth image, or from the
    raw depth dump when no conversion was produced (they share a stem).
    """
    unix, human = parse_timestamp(file_set.original_jpeg)
    depth_name = file_set.depth_image or file_set.raw_depth_file
    command, params = decode_capture_parameters(file_set.original_jpeg, depth_name)

    return Nd3Metadata(
        original_file_name=original_file_name,
        processed_path=str(processed_path),
        timestamp=CaptureTimestamp(unix=unix, human_readable=human),
        akall_command=command,
        capture_parameters=CaptureParameters(**params),
        outputs=MetadataOutputs(
            original_jpeg=file_set.original_jpeg,
            channels=file_set.channels,
            nd3_reconstruction=file_set.point_clouds,
            raw_converted=file_set.raw_converted,
            depth_image=file_set.depth_image,
            nir_image=file_set.nir_image,
        ),
    )


def write_sidecar(metadata: Nd3Metadata, output_dir: Path) -> Path:
    """
    Write metadata as pretty-printed JSON next to the processed files.

    Raises:
        MetadataWriteWarning: the file could not be written
    """
    metadata_path = Path(output_dir) / SIDECAR_NAME
    try:
        with open(metadata_path, "w") as f:
            f.write(metadata.to_json())
    except OSError as e:
        raise MetadataWriteWarning(f"Error writing {metadata_path}: {e}")
    return metadata_path


def synthesize(
    output_dir: Path,
    original_file_name: str,
    write: bool = True
) -> Optional[Nd3Metadata]:
    """
    Read a processed directory and produce its metadata record.

    Args:
        output_dir: Processed capture directory
        original_file_name: Archive base name the directory came from
        write: Also write meta.json into output_dir

    Returns:
        The metadata record, or None if the directory cannot be listed
    """
    output_dir = Path(output_dir)
    try:
        names = [p.name for p in output_dir.iterdir()]
    except OSError as e:
        console.print(f"[red]Error reading processed folder {output_dir}: {e}[/red]")
        return None

    file_set = classify_files(names)
    metadata = build_metadata(original_file_name, output_dir, file_set)

    if metadata.akall_command == UNKNOWN_COMMAND:
        console.print("[yellow]Capture parameters could not be decoded from filenames[/yellow]")

    if write:
        try:
            metadata_path = write_sidecar(metadata, output_dir)
            console.print(f"[green]Meta data generated at: {metadata_path}[/green]")
        except MetadataWriteWarning as e:
            console.print(f"[yellow]{e}[/yellow]")

    return metadata
