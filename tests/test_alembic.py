"""
test_alembic.py — Verify Alembic migration setup and structure.

Checks the baseline revision and env.py wiring by parsing the source,
so no database or Alembic runtime context is needed.

Called by: pytest
Depends on: alembic/, abi.models
"""

import ast
from pathlib import Path

from abi.models import Base

ROOT = Path(__file__).parent.parent
MIGRATION_DIR = ROOT / "alembic" / "versions"


def _module(path: Path) -> ast.Module:
    return ast.parse(path.read_text())


def _assignments(tree: ast.Module) -> dict:
    out = {}
    for node in tree.body:
        if isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name) and node.value is not None:
            out[node.target.id] = ast.literal_eval(node.value)
        elif isinstance(node, ast.Assign) and isinstance(node.targets[0], ast.Name):
            try:
                out[node.targets[0].id] = ast.literal_eval(node.value)
            except ValueError:
                continue
    return out


def _function_source(path: Path, name: str) -> str:
    source = path.read_text()
    for node in _module(path).body:
        if isinstance(node, ast.FunctionDef) and node.name == name:
            return ast.get_source_segment(source, node)
    raise AssertionError(f"{name} not found in {path.name}")


def test_single_baseline_revision():
    files = sorted(MIGRATION_DIR.glob("*.py"))
    assert len(files) >= 1, "No migration files found"
    values = _assignments(_module(files[0]))
    assert values["revision"] == "001_initial"
    assert values["down_revision"] is None, "Initial migration should have no parent"


def test_baseline_creates_and_drops_all_tables():
    path = sorted(MIGRATION_DIR.glob("*.py"))[0]
    assert "Base.metadata.create_all" in _function_source(path, "upgrade")
    assert "Base.metadata.drop_all" in _function_source(path, "downgrade")


def test_env_targets_model_metadata():
    env = (ROOT / "alembic" / "env.py").read_text()
    assert "target_metadata = Base.metadata" in env
    assert "DATABASE_URL" in env or "settings.database_url" in env


def test_metadata_covers_every_table():
    expected = {
        "users", "user_sessions", "invites", "credit_accounts", "credit_ledger",
        "credit_holds", "upgrade_requests", "approval_events", "approval_rules", "interests",
    }
    assert expected <= set(Base.metadata.tables)
