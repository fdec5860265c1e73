"""Test packaging metadata, extras and the console entry point."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))


def _load_pyproject() -> dict[str, Any]:
    pyproject_path = PROJECT_ROOT / "pyproject.toml"
    raw = pyproject_path.read_text(encoding="utf-8")
    if sys.version_info >= (3, 11):
        import tomllib

        return tomllib.loads(raw)

    import tomli

    return tomli.loads(raw)


def _names(requirements: list[str]) -> set[str]:
    names = set()
    for item in requirements:
        head = str(item).split(";")[0].strip().lower()
        for sep in ("[", ">", "<", "=", "!", "~"):
            head = head.split(sep)[0]
        names.add(head.strip())
    return names


def test_pyproject_declares_test_extras() -> None:
    """Ensure pytest, httpx and anyio are under `[project.optional-dependencies].test`."""
    data = _load_pyproject()
    test_deps = data.get("project", {}).get("optional-dependencies", {}).get("test", [])
    assert {"pytest", "httpx", "anyio"} <= _names(test_deps)


def test_runtime_dependencies_cover_imports() -> None:
    data = _load_pyproject()
    deps = _names(data["project"]["dependencies"])
    assert {"loguru", "pyyaml", "rich", "pydantic", "fastapi"} <= deps
    server = _names(data["project"]["optional-dependencies"]["server"])
    assert "uvicorn" in server


def test_console_script_points_at_cli_main() -> None:
    data = _load_pyproject()
    target = data["project"]["scripts"]["workflow-organizer"]
    module_name, func_name = target.split(":")
    assert module_name == "workflow_organizer.cli"

    import importlib

    module = importlib.import_module(module_name)
    assert callable(getattr(module, func_name))
