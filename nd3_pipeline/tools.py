"""
Tool Orchestration Pipeline Stage

Runs the external image and reconstruction tools over an extracted capture:
1. Split the original JPEG into blue/green/red channel images (ImageMagick)
2. Convert raw depth/IR dumps to normalized PNGs (ImageMagick)
3. Reconstruct a point cloud for every color image (ND3 binary)

Each invocation is independent: a failure is logged and only that output
is missing from the processed directory.
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from rich.console import Console

from nd3_utils.naming import (
    CONVERTED_EXT,
    POINT_CLOUD_EXT,
    channel_filename,
    find_raw_depth_file,
    is_color_image,
    original_color_images,
    raw_files,
    replace_extension,
    resolution_for_filename,
)

console = Console()

# ImageMagick -channel selectors, in the order the copies are written
CHANNEL_SELECTORS = [("blue", "B"), ("green", "G"), ("red", "R")]


@dataclass
class ToolConfig:
    """Locations of the external tools and the limits they run under."""
    convert_binary: str = "convert"
    nd3_binary: Optional[str] = None
    calibration_file: Optional[str] = None
    timeout: Optional[float] = 600.0

    @property
    def reconstruction_configured(self) -> bool:
        return bool(self.nd3_binary) and bool(self.calibration_file)


class ToolExecutionWarning(Exception):
    """An external tool invocation failed or could not be started."""
    pass


@dataclass
class StepReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }


@dataclass
class ToolReport:
    """Outcome of every tool step for one processed directory."""
    channels: StepReport = field(default_factory=StepReport)
    raw_conversion: StepReport = field(default_factory=StepReport)
    reconstruction: StepReport = field(default_factory=StepReport)

    def to_dict(self) -> Dict:
        return {
            "channels": self.channels.to_dict(),
            "raw_conversion": self.raw_conversion.to_dict(),
            "reconstruction": self.reconstruction.to_dict(),
        }


def run_tool(cmd: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """
    Run one external tool, logging its output.

    Raises:
        ToolExecutionWarning: binary missing, timed out, or non-zero exit
    """
    console.print(f"[dim]Running: {' '.join(cmd)}[/dim]")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise ToolExecutionWarning(f"Tool not found: {cmd[0]}")
    except subprocess.TimeoutExpired:
        raise ToolExecutionWarning(f"{Path(cmd[0]).name} timed out after {timeout}s")
    except OSError as e:
        raise ToolExecutionWarning(f"Could not start {cmd[0]}: {e}")

    if result.stdout:
        console.print(f"[dim]stdout: {result.stdout.strip()}[/dim]")
    if result.stderr:
        console.print(f"[dim]stderr: {result.stderr.strip()}[/dim]")

    if result.returncode != 0:
        raise ToolExecutionWarning(
            f"{Path(cmd[0]).name} exited with status {result.returncode}"
        )
    return result


def _list_folder(folder: Path) -> Optional[List[str]]:
    try:
        return sorted(p.name for p in folder.iterdir())
    except OSError as e:
        console.print(f"[red]Error reading folder {folder}: {e}[/red]")
        return None


def split_channels(
    folder: Path,
    config: ToolConfig,
    report: Optional[StepReport] = None
) -> StepReport:
    """
    Split the single original JPEG into blue, green and red channel images.

    Skipped with a warning unless exactly one original JPEG is present.
    """
    report = report if report is not None else StepReport()
    names = _list_folder(folder)
    if names is None:
        report.skipped.append(str(folder))
        return report

    originals = original_color_images(names)
    if len(originals) != 1:
        console.print(
            f"[yellow]Expected exactly one original JPEG in {folder}, "
            f"found {len(originals)}; skipping channel split[/yellow]"
        )
        report.skipped.extend(originals)
        return report

    original = originals[0]
    console.print(f"[blue]Splitting channels of {original}...[/blue]")

    for channel, selector in CHANNEL_SELECTORS:
        destination = folder / channel_filename(original, channel)
        cmd = [
            config.convert_binary,
            str(folder / original),
            "-colorspace", "RGB",
            "-channel", selector,
            "-separate",
            "-auto-level",
            str(destination),
        ]
        try:
            run_tool(cmd, config.timeout)
            report.succeeded.append(destination.name)
        except ToolExecutionWarning as e:
            console.print(f"[yellow]Channel {channel} failed for {original}: {e}[/yellow]")
            report.failed.append(destination.name)

    return report


def convert_raw_files(
    folder: Path,
    config: ToolConfig,
    report: Optional[StepReport] = None
) -> StepReport:
    """Convert every extensionless raw dump to a normalized 16-bit grayscale PNG."""
    report = report if report is not None else StepReport()
    names = _list_folder(folder)
    if names is None:
        report.skipped.append(str(folder))
        return report

    for raw_name in raw_files(names):
        resolution = resolution_for_filename(raw_name)
        if resolution is None:
            console.print(f"[yellow]Could not determine resolution for raw file: {raw_name}[/yellow]")
            report.skipped.append(raw_name)
            continue

        destination = folder / (raw_name + CONVERTED_EXT)
        cmd = [
            config.convert_binary,
            "-size", resolution,
            "-depth", "16",
            "-endian", "LSB",
            f"gray:{folder / raw_name}",
            "-normalize",
            str(destination),
        ]
        try:
            run_tool(cmd, config.timeout)
            report.succeeded.append(destination.name)
        except ToolExecutionWarning as e:
            console.print(f"[yellow]Raw conversion failed for {raw_name}: {e}[/yellow]")
            report.failed.append(destination.name)

    return report


def run_reconstruction(
    folder: Path,
    config: ToolConfig,
    report: Optional[StepReport] = None
) -> StepReport:
    """
    Reconstruct a point cloud for every color image against the raw depth file.

    Command line: <nd3> <calibration> <color image> <raw depth> <output ply>
    """
    report = report if report is not None else StepReport()

    if not config.reconstruction_configured:
        console.print("[red]ND3 binary or calibration file not configured; skipping reconstruction[/red]")
        report.skipped.append(str(folder))
        return report

    names = _list_folder(folder)
    if names is None:
        report.skipped.append(str(folder))
        return report

    raw_depth = find_raw_depth_file(names)
    if raw_depth is None:
        console.print(f"[yellow]No raw depth file found in {folder}; skipping reconstruction[/yellow]")
        report.skipped.append(str(folder))
        return report

    color_images = [n for n in names if is_color_image(n)]
    if not color_images:
        console.print(f"[yellow]No JPEG files found in {folder} for reconstruction[/yellow]")
        return report

    for image in color_images:
        destination = folder / replace_extension(image, POINT_CLOUD_EXT)
        cmd = [
            config.nd3_binary,
            config.calibration_file,
            str(folder / image),
            str(folder / raw_depth),
            str(destination),
        ]
        console.print(f"[blue]Reconstructing {destination.name}...[/blue]")
        try:
            run_tool(cmd, config.timeout)
            report.succeeded.append(destination.name)
        except ToolExecutionWarning as e:
            console.print(f"[yellow]Reconstruction failed for {image}: {e}[/yellow]")
            report.failed.append(destination.name)

    return report


def run_commands(folder: Path, config: Optional[ToolConfig] = None) -> ToolReport:
    """
    Run every tool step over an extracted capture directory.

    Always returns once all steps have been attempted.
    """
    config = config or ToolConfig()
    folder = Path(folder)
    report = ToolReport()

    console.print(f"[blue]Starting image processing in folder: {folder}[/blue]")
    split_channels(folder, config, report.channels)
    convert_raw_files(folder, config, report.raw_conversion)

    console.print(f"[blue]Starting ND3 reconstruction in folder: {folder}[/blue]")
    run_reconstruction(folder, config, report.reconstruction)

    console.print(f"[green]Tool steps complete for {folder.name}[/green]")
    return report
