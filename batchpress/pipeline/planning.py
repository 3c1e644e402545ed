"""Turns a BatchPlan into the concrete list of tasks both the conflict check
and the orchestrator work from, and rejects plans that cannot run."""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional
from pydantic import BaseModel

from batchpress.config.models import AppConfig
from batchpress.domain.errors import BatchValidationError
from batchpress.domain.identity import find_key_collisions, task_key
from batchpress.domain.models import BatchPlan, PresetConfig

logger = logging.getLogger(__name__)


class PlannedTask(BaseModel):
    task_key: str
    file_path: Path
    preset: PresetConfig
    output_path: Path


def unique_files(files: List[Path]) -> List[Path]:
    seen = set()
    result = []
    for file_path in files:
        path = Path(file_path)
        if path in seen:
            continue
        seen.add(path)
        result.append(path)
    return result


def unique_presets(presets: List[PresetConfig]) -> List[PresetConfig]:
    """De-duplicates by preset id; a later entry overrides an earlier one's audio choice."""
    by_id: Dict[str, PresetConfig] = {}
    for preset in presets:
        by_id[preset.preset_id] = preset
    return list(by_id.values())


def expand_plan(plan: BatchPlan, config: AppConfig) -> List[PlannedTask]:
    """The (files x presets) cross product minus skipped keys, with output paths resolved."""
    planned = []
    for file_path in unique_files(plan.files):
        custom_name = plan.custom_output_names.get(file_path)
        for preset in unique_presets(plan.presets):
            key = task_key(file_path, preset.preset_id)
            if key in plan.skipped_keys:
                continue
            planned.append(PlannedTask(
                task_key=key,
                file_path=file_path,
                preset=preset,
                output_path=config.output_path_for(file_path, preset, plan.output_directory, custom_name),
            ))
    return planned


def find_output_collisions(planned: List[PlannedTask]) -> Dict[Path, List[str]]:
    """Output paths claimed by two or more planned tasks, with the keys claiming them."""
    owners: Dict[Path, List[str]] = {}
    for item in planned:
        owners.setdefault(item.output_path, []).append(item.task_key)
    return {path: keys for path, keys in owners.items() if len(keys) > 1}


def validate_plan(
    plan: BatchPlan,
    config: AppConfig,
    source_exists: Optional[Callable[[Path], bool]] = None,
) -> None:
    """Raises BatchValidationError describing every reason the plan cannot start."""
    source_exists = source_exists or Path.is_file
    files = unique_files(plan.files)
    presets = unique_presets(plan.presets)
    problems: List[str] = []

    if not files:
        problems.append("No source files selected.")
    if not presets:
        problems.append("No presets selected.")

    limit = config.general.max_videos_per_batch
    if len(files) > limit:
        problems.append(
            f"Too many videos selected ({len(files)}). Maximum allowed is {limit}. "
            f"Select fewer videos or increase max_videos_per_batch."
        )

    unknown = [p.preset_id for p in presets if p.preset_id not in config.presets]
    if unknown:
        problems.append(f"Unknown presets: {', '.join(unknown)}")

    missing = [str(f) for f in files if not source_exists(f)]
    if missing:
        problems.append("These files no longer exist and cannot be compressed: " + ", ".join(missing))

    collisions = find_key_collisions(files, [p.preset_id for p in presets])
    if collisions:
        names = sorted({paths[0].name for paths in collisions.values()})
        problems.append(
            "Different source files share a file name and cannot be told apart: "
            + ", ".join(names)
        )

    if not unknown:
        for output_path, keys in find_output_collisions(expand_plan(plan, config)).items():
            keys = list(dict.fromkeys(keys))
            if len(keys) < 2:
                continue  # same key twice, reported as a name collision above
            problems.append(
                f"Tasks {', '.join(keys)} would all write {output_path}; "
                f"rename one of the sources or give it a custom output name."
            )

    task_count = len(files) * len(presets) - len(plan.skipped_keys)
    if task_count > config.general.max_tasks_per_batch:
        problems.append(
            f"Too many compression tasks ({task_count}). "
            f"Maximum allowed is {config.general.max_tasks_per_batch}."
        )

    if problems:
        for problem in problems:
            logger.warning(f"Batch rejected: {problem}")
        raise BatchValidationError(problems[0], problems)
