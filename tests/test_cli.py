from __future__ import annotations

import json
from pathlib import Path

import pytest

from workflow_organizer.cli import TOKEN_ENV, build_parser, main
from workflow_organizer.config import state_dir


def _run(tmp_path: Path, capsys, *argv: str) -> tuple[int, dict, str]:
    code = main(["--project-dir", str(tmp_path), "--log-level", "WARNING", *argv])
    captured = capsys.readouterr()
    payload = json.loads(captured.out) if captured.out.strip().startswith("{") else {}
    return code, payload, captured.err


def _enable_secret(tmp_path: Path, secret: str = "s3cret") -> None:
    path = state_dir(tmp_path) / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"confirmation:\n  secret: {secret}\n", encoding="utf-8")


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_tree_show_json_lists_default_spaces(tmp_path: Path, capsys) -> None:
    code, payload, _ = _run(tmp_path, capsys, "tree", "show", "--json")
    assert code == 0
    assert [s["id"] for s in payload["spaces"]][:2] == ["ai-lab", "sops"]


def test_created_entities_persist_between_runs(tmp_path: Path, capsys) -> None:
    code, payload, _ = _run(tmp_path, capsys, "tree", "add-space", "Marketing")
    assert code == 0
    space_id = payload["space"]["id"]
    _, payload, _ = _run(tmp_path, capsys, "tree", "add-list", space_id, "Campaigns")
    list_id = payload["collection"]["id"]
    _, payload, _ = _run(tmp_path, capsys, "tree", "add-item", list_id, "Launch post", "--status", "in_qa")
    assert payload["item"]["status"] == "in_qa"

    _, board, _ = _run(tmp_path, capsys, "tree", "show", "--collection", list_id, "--json")
    in_qa = next(c for c in board["columns"] if c["status"] == "in_qa")
    assert [i["title"] for i in in_qa["items"]] == ["Launch post"]


def test_move_item_to_status_column(tmp_path: Path, capsys) -> None:
    code, payload, _ = _run(tmp_path, capsys, "tree", "move", "3", "--collection", "seo-spider", "--status", "done")
    assert code == 0
    assert payload["moved"] is True
    assert payload["to"]["kind"] == "status"


def test_move_without_target_fails(tmp_path: Path, capsys) -> None:
    code, _, err = _run(tmp_path, capsys, "tree", "move", "3")
    assert code == 1
    assert "--space or --collection" in err


def test_toggle_rejects_lists(tmp_path: Path, capsys) -> None:
    code, payload, _ = _run(tmp_path, capsys, "tree", "toggle", "sops")
    assert code == 0
    assert payload["is_open"] is True
    code, _, err = _run(tmp_path, capsys, "tree", "toggle", "seo-spider")
    assert code == 1
    assert "Only spaces and groups" in err


def test_pipeline_insert_and_move(tmp_path: Path, capsys) -> None:
    _, payload, _ = _run(tmp_path, capsys, "pipeline", "add-item", "Acme Roofing", "--stage", "10")
    item_id = payload["item"]["id"]
    _, payload, _ = _run(tmp_path, capsys, "pipeline", "insert-stage", "3", "QA")
    assert payload["stage_count"] == 17
    assert payload["stage"]["short_title"] == "QA"
    _, board, _ = _run(tmp_path, capsys, "pipeline", "show", "--json")
    column = next(c for c in board["columns"] if c["number"] == 11)
    assert [i["id"] for i in column["items"]] == [item_id]
    code, payload, _ = _run(tmp_path, capsys, "pipeline", "move", item_id, "2")
    assert code == 0
    assert payload["moved"] is True


def test_delete_stage_is_refused_without_configured_gate(tmp_path: Path, capsys) -> None:
    code, _, err = _run(tmp_path, capsys, "pipeline", "delete-stage", "5", "--token", "anything")
    assert code == 1
    assert "Confirmation required" in err
    _, board, _ = _run(tmp_path, capsys, "pipeline", "show", "--json")
    assert board["stage_count"] == 16


def test_delete_stage_with_token(tmp_path: Path, capsys) -> None:
    _enable_secret(tmp_path)
    code, payload, _ = _run(tmp_path, capsys, "pipeline", "delete-stage", "5", "--token", "s3cret")
    assert code == 0
    assert payload["stage_count"] == 15


def test_archive_token_from_environment(tmp_path: Path, capsys, monkeypatch) -> None:
    _enable_secret(tmp_path)
    _, payload, _ = _run(tmp_path, capsys, "pipeline", "add-item", "Old Client")
    item_id = payload["item"]["id"]
    monkeypatch.setenv(TOKEN_ENV, "s3cret")
    code, payload, _ = _run(tmp_path, capsys, "pipeline", "archive", item_id)
    assert code == 0
    assert payload["archived"] is True
    _, payload, _ = _run(tmp_path, capsys, "pipeline", "show", "--archived")
    assert [i["id"] for i in payload["archived"]] == [item_id]


def test_unknown_stage_reports_error(tmp_path: Path, capsys) -> None:
    code, _, err = _run(tmp_path, capsys, "pipeline", "rename-stage", "99", "Nope")
    assert code == 1
    assert "Stage 99" in err


def test_rich_rendering_runs(tmp_path: Path, capsys) -> None:
    assert main(["--project-dir", str(tmp_path), "--log-level", "WARNING", "tree", "show"]) == 0
    assert "AI Lab" in capsys.readouterr().out
    assert main(["--project-dir", str(tmp_path), "--log-level", "WARNING", "pipeline", "show"]) == 0
    assert "Pipeline" in capsys.readouterr().out
