"""Filename conventions for capture sessions and their derived artifacts."""

import re
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Dict, Iterable, List, Optional, Tuple

# Channel-separated copies are written as <prefix><original name>
CHANNEL_PREFIXES = {
    "blue": "B_",
    "green": "G_",
    "red": "R_",
}

COLOR_EXT = ".jpeg"
CONVERTED_EXT = ".png"
POINT_CLOUD_EXT = ".ply"

UNKNOWN_COMMAND = "UNKNOWN"

DEPTH_MARKER = re.compile(r"^\d+D")
INFRARED_MARKER = re.compile(r"^\d+IR")
LEADING_DIGITS = re.compile(r"^(\d+)")

COLOR_PATTERN = re.compile(
    r"^(?P<ts>\d+)C(?P<fps>\d{2})(?P<codec>MJPG|NV12|YUY2|BGRA32)(?P<res>\d{3,4}P)$",
    re.IGNORECASE,
)
DEPTH_PATTERN = re.compile(
    r"^(?P<ts>\d+)D(?P<width>\d{4})(?P<height>\d{3,4})"
    r"(?P<mode>[NW]FOV_?(?:2X2BINNED|UNBINNED))$",
    re.IGNORECASE,
)

# Azure Kinect depth modes: resolution, field of view (deg), working range (m), exposure (ms)
DEPTH_MODES: Dict[str, Dict] = {
    "NFOV_2X2BINNED": {
        "resolution": "320x288",
        "field_of_view": "75x65",
        "working_range": "0.50-5.46",
        "exposure_time": 12.8,
    },
    "NFOV_UNBINNED": {
        "resolution": "640x576",
        "field_of_view": "75x65",
        "working_range": "0.50-3.86",
        "exposure_time": 12.8,
    },
    "WFOV_2X2BINNED": {
        "resolution": "512x512",
        "field_of_view": "120x120",
        "working_range": "0.25-2.88",
        "exposure_time": 12.8,
    },
    "WFOV_UNBINNED": {
        "resolution": "1024x1024",
        "field_of_view": "120x120",
        "working_range": "0.25-2.21",
        "exposure_time": 20.3,
    },
}


def normalize_depth_mode(text: str) -> Optional[str]:
    """
    Find a depth mode keyword in text and return its canonical name.

    Accepts both ``NFOV_2X2BINNED`` and ``NFOV2X2BINNED`` spellings, in any case.
    """
    upper = text.upper()
    for mode in DEPTH_MODES:
        if mode in upper or mode.replace("_", "") in upper:
            return mode
    return None


def resolution_for_filename(filename: str) -> Optional[str]:
    """Pixel resolution (WxH) for a raw sensor file, or None if no mode keyword matches."""
    mode = normalize_depth_mode(filename)
    if mode is None:
        return None
    return DEPTH_MODES[mode]["resolution"]


def replace_extension(filename: str, ext: str) -> str:
    """Swap the final extension of filename for ext."""
    return str(PurePath(filename).with_suffix(ext))


def strip_suffix(filename: str, suffix: str) -> str:
    """Base name of an archive: its filename without the (possibly multi-part) suffix."""
    name = PurePath(filename).name
    if suffix and name.lower().endswith(suffix.lower()):
        return name[: -len(suffix)]
    return PurePath(name).stem


def stem(filename: str) -> str:
    return PurePath(filename).stem


def is_raw_file(filename: str) -> bool:
    """Raw sensor dumps carry no extension at all."""
    return "." not in filename


def is_color_image(filename: str) -> bool:
    return filename.lower().endswith(COLOR_EXT)


def channel_of(filename: str) -> Optional[str]:
    """Return the channel name if filename is a channel-separated color image."""
    if not is_color_image(filename):
        return None
    for channel, prefix in CHANNEL_PREFIXES.items():
        if filename.startswith(prefix):
            return channel
    return None


def is_original_color_image(filename: str) -> bool:
    return is_color_image(filename) and channel_of(filename) is None


def channel_filename(original: str, channel: str) -> str:
    """Name of the channel-separated copy of an original color image."""
    return f"{CHANNEL_PREFIXES[channel]}{stem(original)}{COLOR_EXT}"


def original_color_images(names: Iterable[str]) -> List[str]:
    return sorted(n for n in names if is_original_color_image(n))


def raw_files(names: Iterable[str]) -> List[str]:
    return sorted(n for n in names if is_raw_file(n))


def find_raw_depth_file(names: Iterable[str]) -> Optional[str]:
    """First extensionless file named like a depth capture (<digits>D...)."""
    for name in raw_files(names):
        if DEPTH_MARKER.match(name):
            return name
    return None


def parse_timestamp(filename: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Parse a leading run of digits as Unix seconds.

    Returns:
        Tuple of (raw digits, human readable UTC time), both None when the
        filename has no leading digits or they do not form a valid timestamp
    """
    if not filename:
        return None, None

    match = LEADING_DIGITS.match(filename)
    if not match:
        return None, None

    digits = match.group(1)
    try:
        moment = datetime.fromtimestamp(int(digits), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None, None

    return digits, moment.strftime("%Y-%m-%d %H:%M:%S UTC")


def decode_capture_parameters(
    color_name: Optional[str],
    depth_name: Optional[str],
) -> Tuple[str, Dict[str, Optional[object]]]:
    """
    Decode capture settings from the color image and depth file names.

    Both names must match their pattern; otherwise every parameter is None
    and the command is UNKNOWN_COMMAND. Never raises.

    Returns:
        Tuple of (capture command, parameter dict)
    """
    params: Dict[str, Optional[object]] = {
        "frame_rate": None,
        "compression": None,
        "color_resolution": None,
        "depth_mode": None,
        "depth_resolution": None,
        "field_of_view": None,
        "working_range": None,
        "exposure_time": None,
    }

    if not color_name or not depth_name:
        return UNKNOWN_COMMAND, params

    color = COLOR_PATTERN.match(stem(color_name) if is_color_image(color_name) else color_name)
    depth = DEPTH_PATTERN.match(depth_name if is_raw_file(depth_name) else stem(depth_name))
    if not color or not depth:
        return UNKNOWN_COMMAND, params

    mode = normalize_depth_mode(depth.group("mode"))
    if mode is None:
        return UNKNOWN_COMMAND, params

    fps = int(color.group("fps"))
    codec = color.group("codec").upper()
    color_res = color.group("res").upper()
    mode_info = DEPTH_MODES[mode]

    params.update(
        frame_rate=fps,
        compression=codec,
        color_resolution=color_res,
        depth_mode=mode,
        depth_resolution=mode_info["resolution"],
        field_of_view=mode_info["field_of_view"],
        working_range=mode_info["working_range"],
        exposure_time=mode_info["exposure_time"],
    )
    command = f"C{fps:02d}{codec}{color_res}-D{mode}"
    return command, params
