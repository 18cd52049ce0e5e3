"""Data models for capture jobs and the metadata records they produce."""

import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Collection, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .naming import (
    CHANNEL_PREFIXES,
    COLOR_EXT,
    CONVERTED_EXT,
    DEPTH_MARKER,
    INFRARED_MARKER,
    POINT_CLOUD_EXT,
    UNKNOWN_COMMAND,
    channel_of,
    find_raw_depth_file,
    original_color_images,
    raw_files,
    replace_extension,
    strip_suffix,
)


# Pydantic models for capture jobs and metadata records


class JobStage(str, Enum):
    QUEUED = "queued"
    EXTRACTING = "extracting"
    ORCHESTRATING = "orchestrating"
    SYNTHESIZING = "synthesizing"
    PERSISTING = "persisting"
    DONE = "done"
    ERRORED = "errored"


class CaptureJob(BaseModel):
    """One archive moving through the pipeline."""

    source_path: Path
    job_id: str
    output_dir: Path
    created_at: float = Field(default_factory=time.time)
    stage: JobStage = JobStage.QUEUED

    @classmethod
    def create(
        cls,
        source_path: Path,
        processed_root: Path,
        archive_suffix: str = ".tar.gz",
        taken: Collection[str] = (),
    ) -> "CaptureJob":
        """
        Derive a job for an archive.

        The identifier is <archive base name>-<milliseconds since epoch>; the
        millisecond suffix is bumped until it is not in taken and no output
        directory of that name exists.
        """
        source_path = Path(source_path)
        base_name = strip_suffix(source_path.name, archive_suffix)
        created_at = time.time()
        suffix = int(created_at * 1000)

        job_id = f"{base_name}-{suffix}"
        while job_id in taken or (Path(processed_root) / job_id).exists():
            suffix += 1
            job_id = f"{base_name}-{suffix}"

        return cls(
            source_path=source_path,
            job_id=job_id,
            output_dir=Path(processed_root) / job_id,
            created_at=created_at,
        )

    @property
    def base_name(self) -> str:
        return self.job_id.rsplit("-", 1)[0]


class ChannelImages(BaseModel):
    blue: Optional[str] = None
    green: Optional[str] = None
    red: Optional[str] = None


class PointCloudPair(BaseModel):
    ply: str
    color_image: str = Field(alias="colorImage")

    model_config = {"populate_by_name": True}


class ProcessedFileSet(BaseModel):
    """
    Snapshot of an output directory, partitioned by naming convention.

    Built from a sorted listing so the classification never depends on the
    order the filesystem returns entries in.
    """

    names: List[str]
    original_jpeg: Optional[str] = None
    channels: ChannelImages = Field(default_factory=ChannelImages)
    raw_files: List[str] = Field(default_factory=list)
    raw_converted: List[str] = Field(default_factory=list)
    depth_image: Optional[str] = None
    nir_image: Optional[str] = None
    point_clouds: List[PointCloudPair] = Field(default_factory=list)

    @field_validator("names")
    @classmethod
    def sort_names(cls, v):
        return sorted(v)

    @classmethod
    def from_names(cls, names) -> "ProcessedFileSet":
        names = sorted(names)

        originals = original_color_images(names)
        channels = {}
        for channel in CHANNEL_PREFIXES:
            channels[channel] = next((n for n in names if channel_of(n) == channel), None)

        converted = [n for n in names if n.lower().endswith(CONVERTED_EXT)]
        plys = [n for n in names if n.lower().endswith(POINT_CLOUD_EXT)]

        return cls(
            names=names,
            original_jpeg=originals[0] if originals else None,
            channels=ChannelImages(**channels),
            raw_files=raw_files(names),
            raw_converted=converted,
            depth_image=next((n for n in converted if DEPTH_MARKER.match(n)), None),
            nir_image=next((n for n in converted if INFRARED_MARKER.match(n)), None),
            point_clouds=[
                PointCloudPair(ply=p, color_image=replace_extension(p, COLOR_EXT)) for p in plys
            ],
        )

    @property
    def raw_depth_file(self) -> Optional[str]:
        return find_raw_depth_file(self.names)


class CaptureParameters(BaseModel):
    """Capture settings decoded from filenames. All None when decoding fails."""

    frame_rate: Optional[int] = Field(default=None, alias="frameRate")
    compression: Optional[str] = None
    color_resolution: Optional[str] = Field(default=None, alias="colorResolution")
    depth_mode: Optional[str] = Field(default=None, alias="depthMode")
    depth_resolution: Optional[str] = Field(default=None, alias="depthResolution")
    field_of_view: Optional[str] = Field(default=None, alias="fieldOfView")
    working_range: Optional[str] = Field(default=None, alias="workingRange")
    exposure_time: Optional[float] = Field(default=None, alias="exposureTime")

    model_config = {"populate_by_name": True}

    @property
    def is_known(self) -> bool:
        return all(v is not None for v in self.model_dump().values())


class CaptureTimestamp(BaseModel):
    unix: Optional[str] = None
    human_readable: Optional[str] = Field(default=None, alias="humanReadable")

    model_config = {"populate_by_name": True}


class MetadataOutputs(BaseModel):
    original_jpeg: Optional[str] = Field(default=None, alias="originalJPEG")
    channels: ChannelImages = Field(default_factory=ChannelImages)
    nd3_reconstruction: List[PointCloudPair] = Field(
        default_factory=list, alias="nd3Reconstruction"
    )
    raw_converted: List[str] = Field(default_factory=list, alias="rawConverted")
    depth_image: Optional[str] = Field(default=None, alias="depthImage")
    nir_image: Optional[str] = Field(default=None, alias="nirImage")

    model_config = {"populate_by_name": True}


class Nd3Metadata(BaseModel):
    """The metadata record written next to the processed files as meta.json."""

    original_file_name: str = Field(alias="originalFileName")
    processed_path: str = Field(alias="processedPath")
    timestamp: CaptureTimestamp = Field(default_factory=CaptureTimestamp)
    akall_command: str = Field(default=UNKNOWN_COMMAND, alias="akallCommand")
    capture_parameters: CaptureParameters = Field(
        default_factory=CaptureParameters, alias="captureParameters"
    )
    outputs: MetadataOutputs = Field(default_factory=MetadataOutputs)

    model_config = {"populate_by_name": True, "frozen": True}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    def to_dict(self) -> Dict:
        return self.model_dump(mode="json", by_alias=True)


class StoredRecord(BaseModel):
    """Document kept by the record store for each processed capture."""

    id: str = Field(alias="_id")
    original_file_name: str = Field(alias="originalFileName")
    status: str = "processed"
    meta: Dict
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(), alias="createdAt"
    )
    updated_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(), alias="updatedAt"
    )

    model_config = {"populate_by_name": True}
