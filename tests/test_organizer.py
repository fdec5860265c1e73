"""Tests for the organizer facade."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from workflow_organizer.codec import encode_pipeline
from workflow_organizer.config import OrganizerConfig, snapshot_dir, state_dir
from workflow_organizer.defaults import default_pipeline
from workflow_organizer.drag import DragState, DropOutcome
from workflow_organizer.errors import NotFound, Unauthorized
from workflow_organizer.gate import DenyAllGate, SharedSecretGate
from workflow_organizer.locator import Locator
from workflow_organizer.model import ItemStatus
from workflow_organizer.organizer import Organizer
from workflow_organizer.persistence import MemorySnapshotStore, SnapshotStore


class _BrokenStore(SnapshotStore):
    def load(self, key: str):
        return None

    def save(self, key: str, record: str) -> bool:
        return False


def _organizer(store: SnapshotStore | None = None) -> Organizer:
    return Organizer(
        store or MemorySnapshotStore(),
        config=OrganizerConfig(autosave_delay=60),
        gate=SharedSecretGate("s3cret"),
    ).load()


class TestLoading:
    def test_empty_store_starts_from_defaults(self) -> None:
        org = _organizer()
        assert org.tree.space_ids()[0] == "ai-lab"
        assert org.pipeline.stage_count == 16
        assert org.notices() == []

    def test_corrupt_record_is_reported_and_quarantined(self) -> None:
        store = MemorySnapshotStore({"workspace_tree": "spaces: [unclosed"})
        org = _organizer(store)
        (notice,) = org.notices()
        assert notice["code"] == "corrupt_snapshot"
        assert notice["details"]["key"] == "workspace_tree"
        assert store.load("workspace_tree.corrupt") == "spaces: [unclosed"
        assert org.tree.counts()["spaces"] == 5

    def test_saved_pipeline_is_loaded(self) -> None:
        pipeline = default_pipeline()
        item = pipeline.add_item("Acme", stage=7)
        store = MemorySnapshotStore({"pipeline_state": encode_pipeline(pipeline)})
        org = _organizer(store)
        assert org.pipeline.get_item(item.id).stage == 7

    def test_open_reports_unreadable_config(self, tmp_path: Path) -> None:
        config_path = state_dir(tmp_path) / "config.yaml"
        config_path.parent.mkdir(parents=True)
        config_path.write_text("log_level: [oops\n", encoding="utf-8")
        with Organizer.open(tmp_path) as org:
            codes = [n["code"] for n in org.notices()]
        assert codes == ["config_error"]
        assert isinstance(org.gate, DenyAllGate)


class TestAutosave:
    def test_mutations_persist_after_flush(self) -> None:
        store = MemorySnapshotStore()
        org = _organizer(store)
        space = org.add_space("Marketing")
        org.add_collection(space.id, "Campaigns")
        assert store.load("workspace_tree") is None
        assert org.flush() is True
        reopened = _organizer(store)
        assert space.id in reopened.tree
        assert reopened.tree.counts()["collections"] == org.tree.counts()["collections"]

    def test_noop_move_schedules_nothing(self) -> None:
        store = MemorySnapshotStore()
        org = _organizer(store)
        loc = org.tree.collection_locator("seo-spider")
        assert org.move_item("1", loc, loc, 0) is False
        org.flush()
        assert store.load("workspace_tree") is None

    def test_write_failure_becomes_notice(self) -> None:
        org = _organizer(_BrokenStore())
        org.add_pipeline_item("Acme")
        assert org.flush() is False
        (notice,) = org.drain_notices()
        assert notice["code"] == "persistence_write_failed"
        assert notice["level"] == "error"
        assert org.notices() == []
        # The in-memory model is still authoritative.
        assert [i.name for i in org.pipeline.items()] == ["Acme"]

    def test_close_writes_pending_state(self, tmp_path: Path) -> None:
        with Organizer.open(tmp_path) as org:
            org.insert_stage_after(16, "Retainer", "Retainer")
        data = yaml.safe_load((snapshot_dir(tmp_path) / "pipeline_state.yaml").read_text(encoding="utf-8"))
        assert len(data["stages"]) == 17
        with Organizer.open(tmp_path) as again:
            assert again.pipeline.stage_count == 17


class TestGatedActions:
    def test_delete_stage_needs_token(self) -> None:
        org = _organizer()
        item = org.add_pipeline_item("Acme", stage=5)
        with pytest.raises(Unauthorized):
            org.delete_stage(5, "wrong")
        assert org.pipeline.stage_count == 16
        assert org.delete_stage(5, "s3cret") == [item.id]
        assert org.pipeline.get_item(item.id).stage == 4

    def test_missing_stage_reported_before_gate(self) -> None:
        org = _organizer()
        with pytest.raises(NotFound):
            org.delete_stage(40, None)

    def test_archive_needs_token(self) -> None:
        org = _organizer()
        item = org.add_pipeline_item("Acme")
        with pytest.raises(Unauthorized):
            org.archive_pipeline_item(item.id, None)
        assert org.archive_pipeline_item(item.id, "s3cret") is True
        assert [i["id"] for i in org.archived_items()] == [item.id]
        assert org.unarchive_pipeline_item(item.id) is True


class TestDragThroughOrganizer:
    def test_item_drop_onto_other_collection(self) -> None:
        org = _organizer()
        org.pick_up("3")
        session = org.hover(Locator.collection("ai-lab", "agency-automations"), 0)
        assert session.state == DragState.HOVERING_LEGAL
        session = org.drop()
        assert session.last_outcome == DropOutcome.COMMITTED
        assert org.tree.get_collection("agency-automations").item_ids.ids()[0] == "3"

    def test_status_column_drop_changes_status(self) -> None:
        org = _organizer()
        org.pick_up("3")
        org.hover(Locator.status_column("ai-lab", "seo-spider", ItemStatus.DONE))
        org.drop()
        assert org.tree.get_item("3").status == ItemStatus.DONE

    def test_hover_over_missing_container_is_no_target(self) -> None:
        org = _organizer()
        org.pick_up("3")
        session = org.hover(Locator.collection("ai-lab", "list-gone"))
        assert session.state == DragState.HOVERING_NO_TARGET
        assert org.drop().state == DragState.CANCELLED

    def test_hover_past_end_over_last_item_is_no_target(self) -> None:
        org = _organizer()
        org.pick_up("3")
        own_list = Locator.collection("ai-lab", "seo-spider")
        assert org.hover(own_list, 10).state == DragState.HOVERING_NO_TARGET
        assert org.drop().last_outcome == DropOutcome.CANCELLED
        assert org.tree.get_collection("seo-spider").item_ids.ids() == ("1", "2", "3")
        org.pick_up("3")
        assert org.hover(own_list, 0).state == DragState.HOVERING_LEGAL

    def test_stale_drop_aborts_with_notice(self) -> None:
        org = _organizer()
        org.pick_up("3")
        org.hover(Locator.collection("ai-lab", "agency-automations"))
        org.delete("3")
        session = org.drop()
        assert session.state == DragState.IDLE
        assert session.last_outcome == DropOutcome.ABORTED
        assert [n["code"] for n in org.notices()] == ["drag_aborted"]

    def test_pipeline_card_drop(self) -> None:
        org = _organizer()
        item = org.add_pipeline_item("Acme")
        org.pick_up(item.id)
        same = org.hover(Locator.stage_column(1))
        assert same.state == DragState.HOVERING_NO_TARGET
        org.hover(Locator.stage_column(4))
        org.drop()
        assert org.pipeline.get_item(item.id).stage == 4

    def test_collection_drop_into_group(self) -> None:
        org = _organizer()
        org.pick_up("drum-kit")
        org.hover(Locator.group("sops", "completed"), 0)
        assert org.drop().last_outcome == DropOutcome.COMMITTED
        assert org.tree.get_group("completed").collection_ids.ids()[0] == "drum-kit"
        assert org.tree.get_group("completed").is_open is True


class TestRoutingHelpers:
    def test_rename_routes_by_kind(self) -> None:
        org = _organizer()
        org.rename("ai-lab", "Research")
        org.rename("completed", "Archive")
        org.rename("seo-spider", "Crawler")
        org.rename("1", "Metrics API")
        tree = org.tree
        assert tree.get_space("ai-lab").name == "Research"
        assert tree.get_group("completed").name == "Archive"
        assert tree.get_collection("seo-spider").name == "Crawler"
        assert tree.get_item("1").title == "Metrics API"

    def test_subtasks_route_to_owner(self) -> None:
        org = _organizer()
        card = org.add_pipeline_item("Acme")
        org.add_subtask(card.id, "Logo")
        org.add_subtask("1", "Draft endpoint")
        assert org.pipeline.get_item(card.id).subtasks[0].title == "Logo"
        assert org.tree.get_item("1").subtasks[0].title == "Draft endpoint"

    def test_set_item_status_reports_change(self) -> None:
        store = MemorySnapshotStore()
        org = _organizer(store)
        assert org.set_item_status("3", "done") is True
        assert org.set_item_status("3", ItemStatus.DONE) is False
        assert org.tree.get_item("3").status == ItemStatus.DONE
        assert org.flush() is True
        assert "done" in store.load("workspace_tree")

    def test_null_field_update_is_rejected_and_saving_continues(self) -> None:
        store = MemorySnapshotStore()
        org = _organizer(store)
        before = org.tree.get_item("1")
        with pytest.raises(ValueError):
            org.update_item("1", {"metadata": None})
        with pytest.raises(ValueError):
            org.update_pipeline_item(org.add_pipeline_item("Acme").id, {"description": None})
        assert org.tree.get_item("1") == before
        org.add_space("Later")
        assert org.flush() is True
        assert "Later" in store.load("workspace_tree")

    def test_delete_space_counts_items(self) -> None:
        org = _organizer()
        assert org.delete("ai-lab") == 5
        assert "seo-spider" not in org.tree
