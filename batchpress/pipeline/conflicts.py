"""Conflict Resolver: finds planned outputs that already exist and applies the user's decisions."""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from batchpress.config.models import AppConfig
from batchpress.domain.models import BatchPlan, ConflictDisposition, ConflictEntry
from batchpress.pipeline.planning import expand_plan


class ConflictResolver:
    """Checks destination paths for a plan before anything is spawned.

    Args:
        config: AppConfig holding the preset registry and naming settings.
        exists: Existence check; defaults to ``Path.exists``.
    """

    def __init__(self, config: AppConfig, exists: Optional[Callable[[Path], bool]] = None):
        self.config = config
        self.exists = exists or Path.exists
        self.logger = logging.getLogger(__name__)

    def find_conflicts(self, plan: BatchPlan) -> List[ConflictEntry]:
        conflicts: List[ConflictEntry] = []
        seen = set()
        for planned in expand_plan(plan, self.config):
            if planned.output_path in seen:
                self.logger.warning(
                    f"{planned.task_key} shares output {planned.output_path} with another task; "
                    f"not reported twice"
                )
                continue
            seen.add(planned.output_path)
            try:
                found = self.exists(planned.output_path)
            except OSError as e:
                # Fail open: an unreadable destination is treated as free
                self.logger.warning(
                    f"Existence check failed for {planned.output_path} ({planned.task_key}); "
                    f"treating as no conflict: {e}"
                )
                continue
            if found:
                conflicts.append(ConflictEntry(
                    task_key=planned.task_key,
                    file_path=planned.file_path,
                    preset_id=planned.preset.preset_id,
                    existing_output_path=planned.output_path,
                    existing_file_name=planned.output_path.name,
                ))
        if conflicts:
            self.logger.info(f"Conflict check: {len(conflicts)} existing outputs")
        return conflicts

    def apply_dispositions(
        self,
        plan: BatchPlan,
        conflicts: List[ConflictEntry],
        decisions: Optional[Dict[str, ConflictDisposition]] = None,
        replace_all: bool = False,
    ) -> BatchPlan:
        """Returns the plan with every conflict marked SKIP removed.

        ``replace_all`` marks every conflict OVERWRITE. A conflict with no
        decision is skipped, so nothing is overwritten without consent.
        """
        if replace_all:
            return plan
        decisions = decisions or {}
        skipped = []
        for conflict in conflicts:
            decision = decisions.get(conflict.task_key, ConflictDisposition.SKIP)
            if decision == ConflictDisposition.SKIP:
                skipped.append(conflict.task_key)
        if skipped:
            self.logger.info(f"Skipping {len(skipped)} tasks with existing outputs")
        return plan.excluding(skipped)
