import concurrent.futures
import typer
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from vfc.config.loader import load_config
from vfc.config.models import AppConfig
from vfc.domain.errors import VfcError
from vfc.domain.events import FrameDropped, JobProgressUpdated, JobStarted
from vfc.domain.models import JobStatus
from vfc.infrastructure.backends import BackendDispatcher
from vfc.infrastructure.event_bus import EventBus
from vfc.infrastructure.logging import setup_logging
from vfc.infrastructure.media_tool import MediaToolAdapter
from vfc.infrastructure.records import InMemoryRecordStore
from vfc.infrastructure.storage import LocalBlobStore
from vfc.pipeline.orchestrator import Orchestrator

DEFAULT_CONFIG = Path("conf/vfc.yaml")

app = typer.Typer(help="VFC (Video Frame Catcher) - extract, encode and score frames from a video")
console = Console()


def _load(config_path: Optional[Path]) -> AppConfig:
    if config_path is None:
        return AppConfig()
    if not config_path.exists():
        if config_path == DEFAULT_CONFIG:
            return AppConfig()
        typer.secho(f"Error: Config file not found: {config_path}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return load_config(config_path)


def _status_color(status: JobStatus) -> str:
    return {
        JobStatus.COMPLETED: "green",
        JobStatus.CANCELLED: "yellow",
        JobStatus.FAILED: "red",
    }.get(status, "white")


@app.command()
def extract(
    video: Path = typer.Argument(..., help="Video file to extract frames from"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Album name (defaults to the file stem)"),
    fps: Optional[float] = typer.Option(None, "--fps", help="Override frames sampled per second"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Override parallel frame workers"),
    quality: Optional[int] = typer.Option(None, "--quality", "-q", help="Override encode quality (0-100)"),
    gpu: Optional[bool] = typer.Option(None, "--gpu/--cpu", help="Enable/disable hardware acceleration"),
    storage: Optional[Path] = typer.Option(None, "--storage", "-s", help="Override storage base directory"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Extract frames from VIDEO into the frame store."""
    config = _load(config_path)
    if fps: config.extraction.frames_per_second = fps
    if workers: config.extraction.max_parallel_workers = workers
    if quality is not None: config.image.quality = quality
    if gpu is not None: config.acceleration.enabled = gpu
    if storage is not None: config.storage.base_path = str(storage)
    if log_path is not None: config.log_path = str(log_path)
    if debug: config.debug = True

    base_path = Path(config.storage.base_path)
    logger = setup_logging(
        base_path,
        debug=config.debug,
        log_path=Path(config.log_path) if config.log_path else None,
        run_label=f"extract {video.name}",
    )
    logger.info(
        f"Config: fps={config.extraction.frames_per_second}, workers={config.extraction.max_parallel_workers}, "
        f"quality={config.image.quality}, acceleration={config.acceleration.enabled}"
    )

    bus = EventBus()
    blobs = LocalBlobStore(base_path)
    # Continue numbering after albums left by earlier runs
    records = InMemoryRecordStore(start_id=blobs.next_job_id())
    media_tool = MediaToolAdapter(config.media, raw_quality=config.extraction.raw_quality)
    dispatcher = BackendDispatcher(config.acceleration, media_tool, blobs)
    orchestrator = Orchestrator(
        config=config,
        record_store=records,
        blob_store=blobs,
        media_tool=media_tool,
        dispatcher=dispatcher,
        event_bus=bus,
    )

    progress = Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.fields[frames]}"),
        TimeElapsedColumn(),
        console=console,
    )
    task_id = progress.add_task("Sampling", total=1.0, frames="")

    @bus.subscribe(JobStarted)
    def _on_started(event: JobStarted):
        progress.update(task_id, description="Frames", frames=f"0/{event.expected_frames}")

    @bus.subscribe(JobProgressUpdated)
    def _on_progress(event: JobProgressUpdated):
        progress.update(task_id, completed=event.progress, frames=f"{event.processed}/{event.expected}")

    @bus.subscribe(FrameDropped)
    def _on_dropped(event: FrameDropped):
        progress.console.print(f"[yellow]Dropped {event.path.name}: {event.reason}")

    try:
        dispatcher.initialize()
        console.print(f"Backend: [bold]{dispatcher.backend.value}[/bold]")
        job = orchestrator.create_job(video, name=name)

        with progress:
            future = orchestrator.start_job(job.id)
            while True:
                try:
                    job = future.result(timeout=0.5)
                    break
                except concurrent.futures.TimeoutError:
                    continue
                except KeyboardInterrupt:
                    orchestrator.request_cancellation(job.id)
                    progress.console.print("[yellow]Cancellation requested, finishing in-flight frames...")
            progress.update(task_id, completed=orchestrator.get_progress(job.id))

        frames = records.find_frames_by_job(job.id)
        table = Table(title=f"{job.name} ({job.width}x{job.height}, {job.duration}s, {job.video_codec})")
        table.add_column("#", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Format")
        table.add_column("Size", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("File")
        for frame in frames:
            table.add_row(
                str(frame.frame_number),
                f"{frame.timestamp}",
                frame.format.value,
                f"{frame.file_size / 1024:.1f}KB",
                f"{frame.quality_score:.2f}",
                frame.file_path,
            )
        console.print(table)
        color = _status_color(job.status)
        stats = records.statistics()
        console.print(
            f"Status: [{color}]{job.status.value}[/{color}] | frames: {len(frames)} | "
            f"stored: {stats['storage_bytes'] / 1024 / 1024:.1f}MB"
        )
        if job.status != JobStatus.COMPLETED:
            raise typer.Exit(code=2)

    except typer.Exit:
        raise
    except VfcError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        orchestrator.shutdown(wait=True)
        dispatcher.cleanup()


@app.command()
def probe(
    video: Path = typer.Argument(..., help="Video file to probe"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Print container/stream metadata for VIDEO."""
    config = _load(config_path)
    media_tool = MediaToolAdapter(config.media)
    try:
        valid = media_tool.validate(video)
        metadata = media_tool.extract_metadata(video)
    except VfcError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    table = Table(title=str(video))
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("valid", str(valid))
    for field, value in metadata.model_dump().items():
        table.add_row(field, "-" if value is None else str(value))
    console.print(table)
    if not valid:
        raise typer.Exit(code=1)


@app.command()
def backends(
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Detect the hardware acceleration backend this host would use."""
    config = _load(config_path)
    media_tool = MediaToolAdapter(config.media)
    dispatcher = BackendDispatcher(config.acceleration, media_tool, blob_store=None)
    dispatcher.initialize()
    try:
        console.print(f"Backend: [bold]{dispatcher.backend.value}[/bold]")
        console.print(f"Accelerated: {dispatcher.is_accelerated()}")
        console.print(f"Usage: {dispatcher.get_backend_usage() * 100:.0f}%")
    finally:
        dispatcher.cleanup()


if __name__ == "__main__":
    app()
