#!/usr/bin/env python3
"""
Generate a synthetic capture archive.

Creates a color JPEG plus raw 16-bit depth and IR dumps named the way the
capture rig names them, packed into a .tar.gz. Use this to exercise the
ingestion pipeline without a real sensor.

Usage:
    python scripts/generate_synthetic_capture.py [output_dir] [depth_mode]

Then drop the archive into the incoming directory, or run:
    python -m nd3_pipeline.process process output/capture_synthetic.tar.gz
"""

import sys
import tarfile
import tempfile
import time
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw

sys.path.append(str(Path(__file__).parent.parent))

from nd3_utils.naming import DEPTH_MODES


# ── Capture settings ─────────────────────────────────────────────────

FPS = 5
CODEC = "MJPG"
COLOR_RES = "1080P"
COLOR_SIZE = (1920, 1080)

DEFAULT_MODE = "NFOV_2X2BINNED"


def render_color(path: Path):
    """Gradient background with a few colored blocks so channel splits differ."""
    w, h = COLOR_SIZE
    x = np.linspace(0, 255, w, dtype=np.uint8)
    y = np.linspace(0, 255, h, dtype=np.uint8)
    rgb = np.zeros((h, w, 3), dtype=np.uint8)
    rgb[..., 0] = x[None, :]
    rgb[..., 1] = y[:, None]
    rgb[..., 2] = 128

    img = Image.fromarray(rgb, "RGB")
    draw = ImageDraw.Draw(img)
    draw.rectangle([200, 200, 600, 600], fill=(220, 40, 40))
    draw.rectangle([800, 300, 1200, 700], fill=(40, 200, 40))
    draw.rectangle([1400, 400, 1800, 800], fill=(40, 40, 220))
    img.save(path, "JPEG", quality=90)


def render_depth(path: Path, width: int, height: int, near_mm: int = 500):
    """A tilted plane in millimetres, written as little-endian uint16."""
    rows = np.linspace(0, 1500, height, dtype=np.float32)[:, None]
    cols = np.linspace(0, 500, width, dtype=np.float32)[None, :]
    depth = (near_mm + rows + cols).astype("<u2")
    path.write_bytes(depth.tobytes())


def render_ir(path: Path, width: int, height: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    ir = rng.integers(100, 3000, size=(height, width), dtype=np.uint16).astype("<u2")
    path.write_bytes(ir.tobytes())


def generate_capture(output_dir: Path, mode: str = DEFAULT_MODE, timestamp: int = None) -> Path:
    """
    Build a capture archive.

    Returns:
        Path to the .tar.gz
    """
    timestamp = timestamp or int(time.time())
    mode_info = DEPTH_MODES[mode]
    width, height = (int(v) for v in mode_info["resolution"].split("x"))
    dims = f"{width:04d}{height}"

    color_name = f"{timestamp}C{FPS:02d}{CODEC}{COLOR_RES}.jpeg"
    depth_name = f"{timestamp}D{dims}{mode}"
    ir_name = f"{timestamp}IR{dims}{mode}"

    output_dir.mkdir(parents=True, exist_ok=True)
    archive_path = output_dir / "capture_synthetic.tar.gz"

    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)
        render_color(tmp / color_name)
        render_depth(tmp / depth_name, width, height)
        render_ir(tmp / ir_name, width, height)

        with tarfile.open(archive_path, "w:gz") as tf:
            for name in (color_name, depth_name, ir_name):
                tf.add(tmp / name, arcname=name)

    print(f"Wrote {archive_path}")
    print(f"  color: {color_name}")
    print(f"  depth: {depth_name} ({mode_info['resolution']})")
    print(f"  ir:    {ir_name}")
    return archive_path


if __name__ == "__main__":
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("output")
    mode = sys.argv[2].upper() if len(sys.argv) > 2 else DEFAULT_MODE
    if mode not in DEPTH_MODES:
        print(f"Unknown depth mode {mode}; choose from {', '.join(DEPTH_MODES)}")
        sys.exit(1)
    generate_capture(out, mode)
