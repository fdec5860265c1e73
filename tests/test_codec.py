"""Tests for the snapshot codec."""

from __future__ import annotations

import json

import pytest
import yaml

from workflow_organizer import codec
from workflow_organizer.defaults import default_pipeline, default_tree
from workflow_organizer.errors import CorruptSnapshot
from workflow_organizer.model import ItemPriority, ItemStatus


class TestTreeCodec:
    def test_round_trip_default_tree(self) -> None:
        tree = default_tree()
        assert codec.decode_tree(codec.encode_tree(tree)) == tree

    def test_round_trip_after_edits(self) -> None:
        tree = default_tree()
        item = tree.add_item("drum-kit", "Shoot product photos", priority=ItemPriority.HIGH, assignee="sam")
        tree.add_subtask(item.id, "Book studio")
        group = tree.add_group("content", "Drafts")
        tree.add_collection("content", "Blog", group_id=group.id)
        tree.move("3", tree.collection_locator("client-sites"), 0)
        restored = codec.decode_tree(codec.encode_tree(tree))
        assert restored == tree
        assert restored.get_collection("client-sites").item_ids.ids()[0] == "3"
        assert restored.get_item(item.id).subtasks[0].title == "Book studio"

    def test_round_trip_keeps_blank_optional_fields(self) -> None:
        tree = default_tree()
        blank = tree.add_item("drum-kit", "Photos", assignee="")
        tree.update_item(blank.id, {"metadata": {"source": "import", "tags": ["a", "b"]}})
        cleared = tree.add_item("drum-kit", "Retouch", assignee="sam")
        tree.update_item(cleared.id, {"assignee": None, "description": ""})
        restored = codec.decode_tree(codec.encode_tree(tree))
        assert restored == tree
        assert restored.get_item(blank.id).assignee == ""
        assert restored.get_item(cleared.id).assignee is None
        assert restored.get_item(blank.id).metadata == {"source": "import", "tags": ["a", "b"]}

    def test_record_is_a_versioned_yaml_document(self) -> None:
        data = yaml.safe_load(codec.encode_tree(default_tree()))
        assert data["schema_version"] == codec.SCHEMA_VERSION
        assert data["kind"] == codec.TREE_KIND
        assert [s["id"] for s in data["spaces"]] == ["ai-lab", "sops", "websites", "content", "accounting"]

    def test_missing_fields_are_filled(self) -> None:
        record = yaml.safe_dump({
            "spaces": [{"id": "s", "name": "Solo", "collections": [{"id": "c", "name": "List", "items": [{"id": "i"}]}]}],
        })
        tree = codec.decode_tree(record)
        assert tree.get_item("i").status == ItemStatus.TODO
        assert tree.get_space("s").icon == "S"
        assert tree.get_space("s").is_open is False

    @pytest.mark.parametrize(
        "record",
        [
            "",
            "   ",
            "spaces: [unclosed",
            "- just\n- a list\n",
            "kind: pipeline_state\n",
            "schema_version: 99\nspaces: []\n",
            "spaces: not-a-list\n",
        ],
    )
    def test_corrupt_records_raise(self, record: str) -> None:
        with pytest.raises(CorruptSnapshot):
            codec.decode_tree(record)

    def test_double_ownership_is_corrupt(self) -> None:
        item = {"id": "dup", "title": "Twice"}
        record = yaml.safe_dump({
            "spaces": [{
                "id": "s",
                "name": "S",
                "collections": [
                    {"id": "a", "name": "A", "items": [item]},
                    {"id": "b", "name": "B", "items": [item]},
                ],
            }],
        })
        with pytest.raises(CorruptSnapshot):
            codec.decode_tree(record)

    def test_with_error_falls_back_to_defaults(self) -> None:
        tree, err = codec.decode_tree_with_error("{{{")
        assert isinstance(err, CorruptSnapshot)
        assert tree.space_ids() == default_tree().space_ids()
        assert tree.counts() == default_tree().counts()
        tree, err = codec.decode_tree_with_error(codec.encode_tree(default_tree()))
        assert err is None


class TestPipelineCodec:
    def test_round_trip(self) -> None:
        pipeline = default_pipeline()
        item = pipeline.add_item("Acme Roofing", stage=6, domain="acme.example")
        pipeline.add_subtask(item.id, "Collect logo")
        pipeline.archive_item(pipeline.add_item("Old client", stage=16).id)
        pipeline.insert_stage_after(2, "QA", "QA")
        assert codec.decode_pipeline(codec.encode_pipeline(pipeline)) == pipeline

    def test_round_trip_keeps_blank_optional_fields(self) -> None:
        pipeline = default_pipeline()
        blank = pipeline.add_item("Acme", title="", domain="", repo_url="", notes="")
        cleared = pipeline.add_item("Bolt", title="Bolt site", notes="call back", metadata={"tier": 2})
        pipeline.update_item(cleared.id, {"title": None, "notes": None})
        restored = codec.decode_pipeline(codec.encode_pipeline(pipeline))
        assert restored == pipeline
        item = restored.get_item(blank.id)
        assert (item.title, item.domain, item.repo_url, item.notes) == ("", "", "", "")
        assert restored.get_item(cleared.id).title is None
        assert restored.get_item(cleared.id).metadata == {"tier": 2}

    def test_empty_stage_list_uses_defaults(self) -> None:
        pipeline = codec.decode_pipeline("kind: pipeline_state\nstages: []\nitems: []\n")
        assert pipeline.stage_count == 16

    def test_non_contiguous_stages_are_renumbered_in_order(self) -> None:
        record = yaml.safe_dump({
            "stages": [
                {"number": 10, "title": "Ten"},
                {"number": 2, "title": "Two"},
                {"number": 5, "title": "Five"},
            ],
            "items": [
                {"id": "a", "name": "At five", "stage": 5},
                {"id": "b", "name": "At ten", "stage": 10},
                {"id": "c", "name": "Nowhere", "stage": 40},
            ],
        })
        pipeline = codec.decode_pipeline(record)
        assert [s.title for s in pipeline.stages()] == ["Two", "Five", "Ten"]
        assert pipeline.stage_numbers() == [1, 2, 3]
        assert pipeline.get_item("a").stage == 2
        assert pipeline.get_item("b").stage == 3
        assert pipeline.get_item("c").stage == 3

    def test_browser_record_with_camel_case_fields(self) -> None:
        record = json.dumps({
            "workflowSteps": [
                {"number": 1, "title": "Client Submits Form", "shortTitle": "Form", "sop": "<p>a</p>"},
                {"number": 2, "title": "Kickoff", "shortTitle": "Kickoff", "sop": "<p>b</p>"},
            ],
            "clientSites": [
                {
                    "id": "site-1",
                    "clientName": "Off Tint",
                    "currentStep": 2,
                    "repoUrl": "https://git.example/off-tint",
                    "isMobileBusiness": True,
                    "subtasks": [{"id": "s1", "name": "Logo", "completed": True}],
                },
            ],
        })
        pipeline = codec.decode_pipeline(record)
        stage = pipeline.get_stage(1)
        assert (stage.short_title, stage.instructions) == ("Form", "<p>a</p>")
        item = pipeline.get_item("site-1")
        assert item.name == "Off Tint"
        assert item.stage == 2
        assert item.repo_url == "https://git.example/off-tint"
        assert item.is_mobile_business is True
        assert item.subtasks[0].title == "Logo"

    def test_decode_legacy_pipeline(self) -> None:
        sites = json.dumps([{"id": "x", "clientName": "Client", "currentStep": 20}])
        pipeline = codec.decode_legacy_pipeline(None, sites)
        assert pipeline.stage_count == 16
        assert pipeline.get_item("x").stage == 16

    def test_legacy_steps_must_be_a_list(self) -> None:
        with pytest.raises(CorruptSnapshot):
            codec.decode_legacy_pipeline('{"not": "a list"}', None)

    def test_duplicate_item_id_is_corrupt(self) -> None:
        record = yaml.safe_dump({"items": [{"id": "a", "name": "A"}, {"id": "a", "name": "B"}]})
        with pytest.raises(CorruptSnapshot):
            codec.decode_pipeline(record)

    def test_tree_record_is_not_a_pipeline(self) -> None:
        with pytest.raises(CorruptSnapshot):
            codec.decode_pipeline(codec.encode_tree(default_tree()))

    def test_with_error_falls_back_to_defaults(self) -> None:
        pipeline, err = codec.decode_pipeline_with_error("stages: 7\n")
        assert err is not None
        assert err.code == "corrupt_snapshot"
        assert pipeline == default_pipeline()
