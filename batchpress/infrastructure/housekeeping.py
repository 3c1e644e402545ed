import logging
from pathlib import Path
from typing import Iterable

from batchpress.domain.naming import partial_output_path


class HousekeepingService:
    """Removes partial encoder outputs left behind by interrupted runs."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_partial_outputs(self, output_paths: Iterable[Path]) -> int:
        """Removes the .tmp file of each planned output, if one was left behind.

        Only the partial paths batchpress itself writes are touched; other
        .tmp files next to the user's videos are left alone. Returns how many
        were removed.
        """
        removed = 0
        for output_path in output_paths:
            partial = partial_output_path(output_path)
            if not partial.is_file():
                continue
            try:
                partial.unlink()
                removed += 1
            except OSError as e:
                self.logger.warning(f"Could not remove stale partial output {partial}: {e}")
        if removed:
            self.logger.info(f"Housekeeping: removed {removed} stale .tmp files")
        return removed
