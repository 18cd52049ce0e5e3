"""
Extraction Pipeline Stage

Unpacks capture archives into a fresh output directory.
"""

import tarfile
from pathlib import Path
from typing import List
from rich.console import Console

console = Console()


class ExtractionError(Exception):
    """Error during archive extraction."""
    pass


def extract_archive(archive_path: Path, output_dir: Path) -> Path:
    """
    Extract a capture archive into output_dir.

    Archives that wrap every entry in one top-level directory are flattened
    so the capture files sit directly in output_dir. Plain tar extraction
    would keep the wrapper; the later stages only look at the top level, so
    without flattening they would find nothing to process.

    Args:
        archive_path: Path to the .tar.gz archive
        output_dir: Directory to extract to (created if missing)

    Returns:
        Path to the output directory
    """
    archive_path = Path(archive_path)
    output_dir = Path(output_dir)

    if not archive_path.exists():
        raise ExtractionError(f"Archive not found: {archive_path}")

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExtractionError(f"Cannot create output directory {output_dir}: {e}")

    console.print(f"[blue]Extracting {archive_path.name}...[/blue]")
    try:
        with tarfile.open(archive_path, "r:*") as tf:
            if hasattr(tarfile, "data_filter"):
                tf.extractall(output_dir, filter="data")
            else:
                tf.extractall(output_dir)
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ExtractionError(f"Failed to extract {archive_path}: {e}")

    # Handle case where the archive wraps everything in a single subdirectory
    extracted_items = list(output_dir.iterdir())
    if len(extracted_items) == 1 and extracted_items[0].is_dir():
        try:
            wrapper = extracted_items[0].rename(output_dir / f".{extracted_items[0].name}.unwrap")
            for item in list(wrapper.iterdir()):
                item.rename(output_dir / item.name)
            wrapper.rmdir()
        except OSError as e:
            raise ExtractionError(f"Failed to flatten {extracted_items[0]}: {e}")

    console.print(f"[green]Extracted to: {output_dir}[/green]")
    return output_dir


def list_extracted(output_dir: Path) -> List[str]:
    """Sorted names of the top-level entries of an extracted archive."""
    return sorted(p.name for p in Path(output_dir).iterdir())
