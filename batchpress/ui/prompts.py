from typing import Dict, List, Optional, Tuple

from rich.console import Console
from rich.prompt import Prompt

from batchpress.domain.models import ConflictDisposition, ConflictEntry
from batchpress.ui.dashboard import render_conflicts

CHOICES = {
    "o": "overwrite this one",
    "s": "skip this one",
    "a": "overwrite all remaining",
    "n": "skip all remaining",
}


def ask_conflict_dispositions(
    conflicts: List[ConflictEntry],
    console: Optional[Console] = None,
) -> Tuple[Dict[str, ConflictDisposition], bool]:
    """Asks about each existing output. Returns (decisions, replace_all)."""
    console = console or Console()
    console.print(render_conflicts(conflicts))
    console.print("  ".join(f"[bold]{key}[/bold]={label}" for key, label in CHOICES.items()))

    decisions: Dict[str, ConflictDisposition] = {}
    for index, conflict in enumerate(conflicts):
        answer = Prompt.ask(
            f"{conflict.existing_file_name} ({conflict.preset_id})",
            choices=list(CHOICES),
            default="s",
            console=console,
        )
        if answer == "a":
            if index == 0:
                return {}, True
            for remaining in conflicts[index:]:
                decisions[remaining.task_key] = ConflictDisposition.OVERWRITE
            break
        if answer == "n":
            for remaining in conflicts[index:]:
                decisions[remaining.task_key] = ConflictDisposition.SKIP
            break
        decisions[conflict.task_key] = (
            ConflictDisposition.OVERWRITE if answer == "o" else ConflictDisposition.SKIP
        )
    return decisions, False
