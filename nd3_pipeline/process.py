"""
Main Processing Pipeline Orchestrator

Coordinates one capture archive from the incoming directory to a stored
metadata record, and runs the watcher that feeds archives in.
"""

import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Set
from rich.console import Console
from rich.panel import Panel
import typer

from nd3_utils.validation import CaptureJob, JobStage, Nd3Metadata
from .extract import extract_archive, ExtractionError
from .tools import run_commands, ToolConfig, ToolReport
from .metadata import classify_files, build_metadata, synthesize
from .job_queue import JobQueue
from .sinks import ConsoleNotifier, EventNotifier, JsonRecordStore, PersistenceError, RecordStore
from .watcher import DirectoryWatcher, FatalIngestError

console = Console()
app = typer.Typer(help="ND3 Capture Ingestion Pipeline")


def _env_path(environ: Mapping[str, str], key: str) -> Optional[Path]:
    value = environ.get(key)
    return Path(value) if value else None


@dataclass
class PipelineConfig:
    """Configuration for the ingestion pipeline."""
    # Directories
    incoming_dir: Optional[Path] = None
    processed_dir: Path = Path("./watch/processed")
    records_dir: Optional[Path] = None  # Default: <processed_dir>/records

    # Watching
    archive_suffix: str = ".tar.gz"
    poll_interval: float = 1.0

    # External tools
    convert_binary: str = "convert"
    nd3_binary: Optional[str] = None
    calibration_file: Optional[str] = None
    tool_timeout: Optional[float] = 600.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Read configuration from INCOMING_DIR, PROCESSED_DIR, ND3_BINARY, CALIBRATION, ..."""
        environ = os.environ if environ is None else environ
        config = cls(
            incoming_dir=_env_path(environ, "INCOMING_DIR"),
            records_dir=_env_path(environ, "RECORDS_DIR"),
            nd3_binary=environ.get("ND3_BINARY") or None,
            calibration_file=environ.get("CALIBRATION") or None,
        )
        if environ.get("PROCESSED_DIR"):
            config.processed_dir = Path(environ["PROCESSED_DIR"])
        if environ.get("ARCHIVE_SUFFIX"):
            config.archive_suffix = environ["ARCHIVE_SUFFIX"]
        if environ.get("CONVERT_BINARY"):
            config.convert_binary = environ["CONVERT_BINARY"]
        if environ.get("TOOL_TIMEOUT"):
            config.tool_timeout = float(environ["TOOL_TIMEOUT"])
        return config

    @property
    def resolved_records_dir(self) -> Path:
        return self.records_dir or self.processed_dir / "records"

    def tool_config(self) -> ToolConfig:
        return ToolConfig(
            convert_binary=self.convert_binary,
            nd3_binary=self.nd3_binary,
            calibration_file=self.calibration_file,
            timeout=self.tool_timeout,
        )


@dataclass
class PipelineStats:
    """Statistics collected during pipeline execution."""
    start_time: float = 0
    end_time: float = 0
    stages: Dict = field(default_factory=dict)

    def start(self):
        self.start_time = time.time()

    def stop(self):
        self.end_time = time.time()

    def record_stage(self, name: str, duration: float, **kwargs):
        self.stages[name] = {"duration_seconds": duration, **kwargs}

    @property
    def total_duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict:
        return {
            "total_duration_seconds": self.total_duration,
            "stages": self.stages,
        }


@dataclass
class JobResult:
    """Outcome of one job."""
    job: CaptureJob
    metadata: Optional[Nd3Metadata] = None
    record_id: Optional[str] = None
    tool_report: Optional[ToolReport] = None
    error: Optional[str] = None
    stats: PipelineStats = field(default_factory=PipelineStats)

    @property
    def succeeded(self) -> bool:
        return self.job.stage == JobStage.DONE


class PipelineCoordinator:
    """
    Runs a job through extract -> tools -> metadata -> store.

    Only extraction and persistence failures fail the job; everything else
    just leaves gaps in the metadata. Usable directly as a JobQueue runner.
    """

    def __init__(
        self,
        config: PipelineConfig,
        store: Optional[RecordStore] = None,
        notifier: Optional[EventNotifier] = None,
    ):
        self.config = config
        self.store = store if store is not None else JsonRecordStore(config.resolved_records_dir)
        self.notifier = notifier if notifier is not None else ConsoleNotifier()
        self._issued: Set[str] = set()
        self._issued_lock = threading.Lock()

    def create_job(self, archive_path: Path) -> CaptureJob:
        with self._issued_lock:
            job = CaptureJob.create(
                archive_path,
                self.config.processed_dir,
                archive_suffix=self.config.archive_suffix,
                taken=self._issued,
            )
            self._issued.add(job.job_id)
        return job

    def _emit(self, event: str, payload: Dict) -> None:
        try:
            self.notifier.notify(event, payload)
        except Exception as e:
            console.print(f"[yellow]Notification {event} failed: {e}[/yellow]")

    def _set_stage(self, job: CaptureJob, stage: JobStage) -> None:
        job.stage = stage
        self._emit("jobStageChanged", {"jobId": job.job_id, "stage": stage.value})

    def process_job(self, job: CaptureJob) -> JobResult:
        result = JobResult(job=job)
        stats = result.stats
        stats.start()
        file_path = str(job.source_path)

        console.print(Panel.fit(
            f"[bold blue]Processing capture[/bold blue]\n"
            f"Archive: {job.source_path}\n"
            f"Output: {job.output_dir}",
            border_style="blue"
        ))

        # Stage 1: Extract
        self._set_stage(job, JobStage.EXTRACTING)
        stage_start = time.time()
        try:
            extract_archive(job.source_path, job.output_dir)
        except ExtractionError as e:
            console.print(f"[bold red]Extraction failed:[/bold red] {e}")
            result.error = str(e)
            self._set_stage(job, JobStage.ERRORED)
            stats.stop()
            return result
        stats.record_stage("extract", time.time() - stage_start)
        self._emit("decompressionComplete", {"filePath": file_path, "outputDir": str(job.output_dir)})

        # Stage 2: External tools
        self._set_stage(job, JobStage.ORCHESTRATING)
        stage_start = time.time()
        result.tool_report = run_commands(job.output_dir, self.config.tool_config())
        stats.record_stage("tools", time.time() - stage_start, **result.tool_report.to_dict())
        self._emit("shellCommandsDone", {"filePath": file_path})

        # Stage 3: Metadata
        self._set_stage(job, JobStage.SYNTHESIZING)
        stage_start = time.time()
        metadata = synthesize(job.output_dir, job.base_name)
        if metadata is None:
            result.error = f"Could not read processed folder {job.output_dir}"
            self._set_stage(job, JobStage.ERRORED)
            stats.stop()
            return result
        result.metadata = metadata
        stats.record_stage("metadata", time.time() - stage_start,
                           akall_command=metadata.akall_command)

        # Stage 4: Persist
        self._set_stage(job, JobStage.PERSISTING)
        stage_start = time.time()
        try:
            result.record_id = self.store.persist(metadata)
        except Exception as e:
            # Store clients raise their own error types
            error = e if isinstance(e, PersistenceError) else PersistenceError(f"{type(e).__name__}: {e}")
            console.print(f"[bold red]Error saving ND3 record:[/bold red] {error}")
            result.error = str(error)
            self._set_stage(job, JobStage.ERRORED)
            stats.stop()
            return result
        stats.record_stage("persist", time.time() - stage_start)
        console.print(f"[green]ND3 record saved with _id: {result.record_id}[/green]")

        self._set_stage(job, JobStage.DONE)
        self._emit("fileProcessed", {"_id": result.record_id, "filePath": file_path})
        stats.stop()

        console.print(Panel.fit(
            f"[bold green]Capture processed[/bold green]\n\n"
            f"Job: {job.job_id}\n"
            f"Command: {metadata.akall_command}\n"
            f"Total time: {stats.total_duration:.1f}s",
            border_style="green"
        ))
        return result

    def __call__(self, job: CaptureJob) -> JobResult:
        return self.process_job(job)


def run_pipeline(
    archive_path: Path,
    config: Optional[PipelineConfig] = None,
    store: Optional[RecordStore] = None,
    notifier: Optional[EventNotifier] = None,
) -> JobResult:
    """Process a single archive synchronously."""
    config = config or PipelineConfig.from_env()
    coordinator = PipelineCoordinator(config, store=store, notifier=notifier)
    return coordinator.process_job(coordinator.create_job(archive_path))


class IngestService:
    """Watcher feeding a serial queue of coordinator jobs."""

    def __init__(
        self,
        config: PipelineConfig,
        store: Optional[RecordStore] = None,
        notifier: Optional[EventNotifier] = None,
    ):
        if config.incoming_dir is None:
            raise FatalIngestError("INCOMING_DIR is not configured.")
        self.config = config
        self.coordinator = PipelineCoordinator(config, store=store, notifier=notifier)
        self.queue: JobQueue[CaptureJob] = JobQueue(self.coordinator)
        self.watcher = DirectoryWatcher(
            config.incoming_dir,
            self.enqueue,
            archive_suffix=config.archive_suffix,
            poll_interval=config.poll_interval,
        )

    def enqueue(self, archive_path: Path) -> CaptureJob:
        job = self.coordinator.create_job(archive_path)
        console.print(f"[blue]Queued {job.job_id} ({self.queue.pending} waiting)[/blue]")
        self.queue.submit(job)
        return job

    def start(self, scan_existing: bool = False) -> None:
        self.watcher.start()
        if scan_existing:
            self.watcher.scan_existing()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.watcher.stop()
        self.queue.wait_idle(timeout)


def _build_config(
    incoming_dir: Optional[Path] = None,
    processed_dir: Optional[Path] = None,
    nd3_binary: Optional[str] = None,
    calibration: Optional[str] = None,
    timeout: Optional[float] = None,
) -> PipelineConfig:
    config = PipelineConfig.from_env()
    if incoming_dir is not None:
        config.incoming_dir = incoming_dir
    if processed_dir is not None:
        config.processed_dir = processed_dir
    if nd3_binary:
        config.nd3_binary = nd3_binary
    if calibration:
        config.calibration_file = calibration
    if timeout is not None:
        config.tool_timeout = timeout
    return config


@app.command()
def watch(
    incoming_dir: Optional[Path] = typer.Option(None, envvar="INCOMING_DIR", help="Directory to watch for archives"),
    processed_dir: Optional[Path] = typer.Option(None, envvar="PROCESSED_DIR", help="Root for processed output"),
    nd3_binary: Optional[str] = typer.Option(None, envvar="ND3_BINARY", help="ND3 reconstruction binary"),
    calibration: Optional[str] = typer.Option(None, envvar="CALIBRATION", help="Calibration file for ND3"),
    timeout: Optional[float] = typer.Option(None, help="Per-tool timeout in seconds"),
    scan_existing: bool = typer.Option(False, "--scan-existing", help="Also process archives already present"),
):
    """Watch the incoming directory and process archives as they arrive."""
    config = _build_config(incoming_dir, processed_dir, nd3_binary, calibration, timeout)

    try:
        service = IngestService(config)
        service.start(scan_existing=scan_existing)
    except FatalIngestError as e:
        console.print(f"[bold red]Watcher not started:[/bold red] {e}")
        raise typer.Exit(1)

    if not config.nd3_binary or not config.calibration_file:
        console.print("[yellow]ND3_BINARY or CALIBRATION not set; reconstruction will be skipped[/yellow]")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("[yellow]Stopping watcher...[/yellow]")
    finally:
        service.stop()


@app.command()
def process(
    archive: Path = typer.Argument(..., help="Path to a capture archive"),
    processed_dir: Optional[Path] = typer.Option(None, envvar="PROCESSED_DIR", help="Root for processed output"),
    nd3_binary: Optional[str] = typer.Option(None, envvar="ND3_BINARY", help="ND3 reconstruction binary"),
    calibration: Optional[str] = typer.Option(None, envvar="CALIBRATION", help="Calibration file for ND3"),
    timeout: Optional[float] = typer.Option(None, help="Per-tool timeout in seconds"),
):
    """Process a single archive and exit."""
    config = _build_config(None, processed_dir, nd3_binary, calibration, timeout)
    result = run_pipeline(archive, config)
    console.print("[bold]Stage timings:[/bold]")
    console.print_json(data=result.stats.to_dict())
    if not result.succeeded:
        console.print(f"[bold red]Pipeline failed:[/bold red] {result.error}")
        raise typer.Exit(1)


@app.command()
def inspect(
    folder: Path = typer.Argument(..., help="Processed capture directory"),
):
    """Classify a processed directory and print the metadata it would produce."""
    if not folder.is_dir():
        console.print(f"[bold red]Not a directory:[/bold red] {folder}")
        raise typer.Exit(1)

    file_set = classify_files(p.name for p in folder.iterdir())
    metadata = build_metadata(folder.name, folder, file_set)
    console.print_json(metadata.to_json())


@app.command("stages")
def list_stages():
    """List all pipeline stages."""
    stages = [
        ("1. Watch", "Wait for archives to finish arriving"),
        ("2. Extract", "Unpack the archive into its own output directory"),
        ("3. Tools", "Split channels, convert raw dumps, reconstruct point clouds"),
        ("4. Metadata", "Classify outputs, decode capture parameters, write meta.json"),
        ("5. Persist", "Store the record and announce it"),
    ]

    console.print("[bold]Pipeline Stages:[/bold]\n")
    for name, desc in stages:
        console.print(f"  [blue]{name}[/blue]: {desc}")


if __name__ == "__main__":
    app()
