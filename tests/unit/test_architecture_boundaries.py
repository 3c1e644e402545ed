import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


def _imported_modules(py_file: Path):
    tree = ast.parse(py_file.read_text(encoding="utf-8"), filename=str(py_file))
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                yield node.lineno, alias.name
        elif isinstance(node, ast.ImportFrom):
            yield node.lineno, node.module or ""


def _violations(layer: str, forbidden):
    violations = []
    for py_file in (REPO_ROOT / "batchpress" / layer).rglob("*.py"):
        rel_path = py_file.relative_to(REPO_ROOT)
        for lineno, name in _imported_modules(py_file):
            for prefix in forbidden:
                if name == prefix or name.startswith(prefix + "."):
                    violations.append(f"{rel_path}:{lineno} imports {name}")
    return violations


def test_pipeline_layer_does_not_import_ui_layer():
    """Pipeline layer must not import from UI layer directly."""
    violations = _violations("pipeline", ["batchpress.ui"])
    assert not violations, "Pipeline layer must not import UI layer:\n" + "\n".join(violations)


def test_domain_layer_has_no_outward_imports():
    """Domain models know nothing about config, infrastructure, pipeline or UI."""
    forbidden = ["batchpress.config", "batchpress.infrastructure", "batchpress.pipeline", "batchpress.ui"]
    violations = _violations("domain", forbidden)
    assert not violations, "Domain layer must stay self-contained:\n" + "\n".join(violations)
