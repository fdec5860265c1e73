from __future__ import annotations

from pathlib import Path

from workflow_organizer.config import (
    OrganizerConfig,
    load_organizer_config,
    snapshot_dir,
    state_dir,
)
from workflow_organizer.persistence import DEFAULT_AUTOSAVE_DELAY, PIPELINE_KEY, TREE_KEY


def _write_config(project_dir: Path, text: str) -> None:
    path = state_dir(project_dir) / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    config, err = load_organizer_config(tmp_path)
    assert err is None
    assert config.autosave_delay == DEFAULT_AUTOSAVE_DELAY
    assert config.log_level == "INFO"
    assert (config.tree_key, config.pipeline_key) == (TREE_KEY, PIPELINE_KEY)
    assert config.confirmation == {}


def test_values_are_read(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        "autosave_delay: 0.5\n"
        "log_level: debug\n"
        "keys:\n"
        "  tree: my_tree\n"
        "  pipeline: my_pipeline\n"
        "confirmation:\n"
        "  secret: s3cret\n",
    )
    config, err = load_organizer_config(tmp_path)
    assert err is None
    assert config.autosave_delay == 0.5
    assert config.log_level == "DEBUG"
    assert (config.tree_key, config.pipeline_key) == ("my_tree", "my_pipeline")
    assert config.confirmation == {"secret": "s3cret"}


def test_invalid_values_fall_back(tmp_path: Path) -> None:
    config = OrganizerConfig.from_dict({"autosave_delay": -1, "log_level": "LOUD", "keys": "nope"})
    assert config.autosave_delay == DEFAULT_AUTOSAVE_DELAY
    assert config.log_level == "INFO"
    assert config.tree_key == TREE_KEY


def test_bool_is_not_a_delay() -> None:
    assert OrganizerConfig.from_dict({"autosave_delay": True}).autosave_delay == DEFAULT_AUTOSAVE_DELAY


def test_unparseable_config_reports_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "autosave_delay: [unclosed\n")
    config, err = load_organizer_config(tmp_path)
    assert err is not None
    assert "YAMLError" in err
    assert config.autosave_delay == DEFAULT_AUTOSAVE_DELAY


def test_non_mapping_config_reports_error(tmp_path: Path) -> None:
    _write_config(tmp_path, "- a\n- b\n")
    _, err = load_organizer_config(tmp_path)
    assert err is not None
    assert "expected mapping" in err


def test_snapshot_dir_layout(tmp_path: Path) -> None:
    assert snapshot_dir(tmp_path) == tmp_path.resolve() / ".organizer" / "snapshots"
