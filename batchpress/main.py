import typer
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.box import ROUNDED

from batchpress.config.loader import load_config
from batchpress.config.models import AppConfig
from batchpress.domain.errors import BatchpressError, BatchValidationError
from batchpress.domain.events import ConflictsDetected
from batchpress.domain.models import BatchPlan, PresetConfig
from batchpress.infrastructure.event_bus import EventBus
from batchpress.infrastructure.ffmpeg import FFmpegEncoder
from batchpress.infrastructure.housekeeping import HousekeepingService
from batchpress.infrastructure.logging import setup_logging
from batchpress.infrastructure.telemetry import TelemetryMonitor
from batchpress.pipeline.admission import AdmissionController
from batchpress.pipeline.conflicts import ConflictResolver
from batchpress.pipeline.orchestrator import Orchestrator
from batchpress.pipeline.planning import expand_plan, validate_plan
from batchpress.ui.dashboard import Dashboard, render_summary, render_tasks
from batchpress.ui.keyboard import KeyboardListener
from batchpress.ui.manager import UIManager
from batchpress.ui.prompts import ask_conflict_dispositions
from batchpress.ui.state import UIState

DEFAULT_CONFIG_PATH = Path("conf/batchpress.yaml")

app = typer.Typer(help="batchpress - batch video compression across multiple presets")


def _load_app_config(config_path: Optional[Path]) -> AppConfig:
    if config_path is not None:
        return load_config(config_path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return AppConfig()


def _selected_presets(config: AppConfig, preset_ids: List[str], keep_audio: Optional[bool]) -> List[PresetConfig]:
    selected = []
    for preset_id in preset_ids:
        preset = config.get_preset(preset_id)
        audio = preset.default_keep_audio if keep_audio is None else keep_audio
        selected.append(PresetConfig(preset_id=preset_id, keep_audio=audio))
    return selected


@app.command()
def compress(
    files: List[Path] = typer.Argument(..., help="Video files to compress"),
    presets: List[str] = typer.Option(..., "--preset", "-p", help="Preset id (repeat for several)"),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Override max concurrent encodes (1-6)"),
    keep_audio: Optional[bool] = typer.Option(None, "--keep-audio/--mute", help="Keep or drop audio for every preset"),
    replace_all: bool = typer.Option(False, "--replace-all", help="Overwrite every existing output"),
    skip_existing: bool = typer.Option(False, "--skip-existing", help="Skip every task whose output exists"),
    thermal: Optional[bool] = typer.Option(None, "--thermal/--no-thermal", help="Enable/disable thermal throttling"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Log file path (default: <output>/batchpress.log)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Compress every FILE with every selected preset."""
    console = Console()
    if replace_all and skip_existing:
        typer.secho("Error: --replace-all and --skip-existing are mutually exclusive", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        config = _load_app_config(config_path)
        if threads:
            if not 1 <= threads <= 6:
                typer.secho("Error: --threads must be between 1 and 6", fg=typer.colors.RED, err=True)
                raise typer.Exit(code=1)
            config.general.max_concurrency = threads
        if thermal is not None: config.thermal.enabled = thermal
        if log_path is not None: config.general.log_path = str(log_path)
        if debug: config.general.debug = True

        if output_dir is None:
            if config.general.output_directory:
                output_dir = Path(config.general.output_directory)
            else:
                output_dir = Path(files[0]).resolve().parent
        output_dir = Path(output_dir)

        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(output_dir, debug=config.general.debug, log_path=log_path_value)
        logger.info(f"batchpress started: files={len(files)}, presets={presets}, output={output_dir}")
        logger.info(
            f"Config: max_concurrency={config.general.max_concurrency}, "
            f"thermal={config.thermal.enabled}, debug={config.general.debug}"
        )

        plan = BatchPlan(
            files=[Path(f) for f in files],
            presets=_selected_presets(config, presets, keep_audio),
            output_directory=output_dir,
        )
        validate_plan(plan, config)
        HousekeepingService().cleanup_partial_outputs(p.output_path for p in expand_plan(plan, config))

        bus = EventBus()
        ui_state = UIState()
        UIManager(bus, ui_state)
        resolver = ConflictResolver(config)
        conflicts = resolver.find_conflicts(plan)
        if conflicts:
            bus.publish(ConflictsDetected(conflicts=conflicts))
            if replace_all:
                plan = resolver.apply_dispositions(plan, conflicts, replace_all=True)
            elif skip_existing:
                plan = resolver.apply_dispositions(plan, conflicts)
            else:
                decisions, overwrite_all = ask_conflict_dispositions(conflicts, console)
                plan = resolver.apply_dispositions(plan, conflicts, decisions, replace_all=overwrite_all)

        telemetry = TelemetryMonitor(bus, config.thermal)
        orchestrator = Orchestrator(
            config,
            bus,
            FFmpegEncoder(config.encoder, debug=config.general.debug),
            admission=AdmissionController(config.thermal),
            telemetry=telemetry.latest,
        )

        keyboard = KeyboardListener(bus)
        orchestrator.start()
        telemetry.start()
        keyboard.start()
        try:
            with Dashboard(ui_state, console=console):
                try:
                    orchestrator.initialize_batch(plan)
                    orchestrator.run()
                    orchestrator.wait_until_idle()
                except KeyboardInterrupt:
                    logger.info("Interrupt requested (Ctrl+C) - cancelling batch...")
                    orchestrator.cancel()
                    orchestrator.wait_until_idle(timeout=config.encoder.terminate_grace_s + 5)
                    raise
                finally:
                    summary = orchestrator.summary()
                    tasks = orchestrator.tasks()
        finally:
            orchestrator.teardown()
            orchestrator.wait_for_orphans(timeout=config.encoder.terminate_grace_s + 2)
            keyboard.stop()
            orchestrator.stop()
            telemetry.stop()

        if tasks:
            console.print(render_tasks(tasks))
        console.print(render_summary(summary))
        logger.info(
            f"batchpress finished: completed={summary.completed} failed={summary.failed} "
            f"cancelled={summary.cancelled}"
        )
        if summary.failed or summary.cancelled:
            raise typer.Exit(code=1)

    except KeyboardInterrupt:
        typer.secho("\n✓ Compression stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except BatchValidationError as e:
        for problem in e.problems or [str(e)]:
            typer.secho(f"Error: {problem}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except (BatchpressError, FileNotFoundError, ValueError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command("presets")
def list_presets(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """List available compression presets."""
    try:
        config = _load_app_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    table = Table(title="Presets", box=ROUNDED)
    table.add_column("Id", style="bold")
    table.add_column("Folder")
    table.add_column("Codec")
    table.add_column("Resolution")
    table.add_column("Bitrate")
    table.add_column("Audio")
    table.add_column("Description")
    for preset_id, preset in config.presets.items():
        params = preset.params
        table.add_row(
            preset_id,
            preset.folder_name,
            params.video_codec,
            params.resolution or "source",
            params.video_bitrate or "-",
            "keep" if preset.default_keep_audio else "mute",
            preset.description,
        )
    Console().print(table)


if __name__ == "__main__":
    app()
