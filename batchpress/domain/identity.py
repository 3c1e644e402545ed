"""Task identity: the key joining a task across planning, execution and progress reporting.

The encoder side only ever knows a source file's base name, so the key is
built from ``Path(file).name`` rather than the full path. Two different
folders holding a file with the same name therefore produce the same key;
`find_key_collisions` surfaces those pairs so callers can refuse the plan
instead of attributing progress to the wrong task.
"""

from pathlib import Path
from typing import Dict, Iterable, List, NewType, Union

TaskKey = NewType("TaskKey", str)

KEY_SEPARATOR = "::"


def task_key(file_path: Union[str, Path], preset_id: str) -> TaskKey:
    """Builds the key for one (file, preset) pair: ``<base name>::<preset id>``."""
    base_name = Path(file_path).name
    if not base_name:
        raise ValueError(f"Cannot derive a task key from empty path {file_path!r}")
    if not preset_id:
        raise ValueError("Cannot derive a task key without a preset id")
    return TaskKey(f"{base_name}{KEY_SEPARATOR}{preset_id}")


def find_key_collisions(files: Iterable[Path], preset_ids: Iterable[str]) -> Dict[TaskKey, List[Path]]:
    """Returns keys shared by two or more distinct source paths."""
    preset_ids = list(preset_ids)
    owners: Dict[TaskKey, List[Path]] = {}
    for file_path in files:
        for preset_id in preset_ids:
            paths = owners.setdefault(task_key(file_path, preset_id), [])
            if Path(file_path) not in paths:
                paths.append(Path(file_path))
    return {key: paths for key, paths in owners.items() if len(paths) > 1}
