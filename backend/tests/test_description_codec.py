from __future__ import annotations

import json

import pytest

from app.services.description_codec import (
    PlainDescription,
    StructuredDescription,
    decode_description,
    encode_description,
)
from app.services.subtask_tree import SubtaskNode


def test_round_trip_preserves_text_and_tree() -> None:
    tree = (
        SubtaskNode(id="a", title="Outline", completed=True),
        SubtaskNode(id="b", title="Draft", children=(SubtaskNode(id="b1", title="Intro"),)),
    )

    decoded = decode_description(encode_description("Write the essay", tree))

    assert isinstance(decoded, StructuredDescription)
    assert decoded.text == "Write the essay"
    assert decoded.subtasks == tree


def test_encode_without_subtasks_keeps_plain_text() -> None:
    assert encode_description("Just text", ()) == "Just text"
    assert encode_description("", ()) is None
    assert encode_description(None, []) is None


def test_encode_writes_compact_envelope() -> None:
    raw = encode_description("Año nuevo", (SubtaskNode(id="a", title="Plan"),))

    assert json.loads(raw) == {
        "text": "Año nuevo",
        "subtasks": [{"id": "a", "title": "Plan", "completed": False, "children": []}],
    }
    assert "Año" in raw
    assert ", " not in raw


@pytest.mark.parametrize("raw", [None, ""])
def test_empty_column_decodes_to_empty_plain(raw) -> None:
    decoded = decode_description(raw)

    assert decoded == PlainDescription("")
    assert decoded.subtasks == ()


@pytest.mark.parametrize(
    "raw",
    [
        "Buy groceries",
        "{not json",
        "[1, 2, 3]",
        '{"text": "hello"}',
        '{"text": "hello", "subtasks": "nope"}',
        '"just a string"',
    ],
)
def test_non_envelope_values_read_as_plain_text(raw) -> None:
    decoded = decode_description(raw)

    assert decoded == PlainDescription(raw)
    assert decoded.subtasks == ()


def test_malformed_subtask_nodes_fall_back_to_plain_text() -> None:
    raw = json.dumps({"text": "x", "subtasks": [{"id": "", "title": "empty id"}]})

    assert decode_description(raw) == PlainDescription(raw)


def test_missing_node_fields_take_defaults() -> None:
    raw = json.dumps({"subtasks": [{"id": "a", "children": None}]})

    decoded = decode_description(raw)

    assert decoded.text == ""
    assert decoded.subtasks == (SubtaskNode(id="a"),)


def test_deeply_nested_text_reads_as_plain_text() -> None:
    raw = "[" * 2500 + "]" * 2500

    decoded = decode_description(raw)

    assert decoded == PlainDescription(raw)


def test_stored_node_without_id_falls_back_to_plain_text() -> None:
    raw = json.dumps({"text": "x", "subtasks": [{"id": "a", "children": [{"title": "no id"}]}]})

    assert decode_description(raw) == PlainDescription(raw)


def test_stored_ids_are_stable_across_reads() -> None:
    raw = json.dumps({"text": "", "subtasks": [{"id": "a", "children": [{"id": "b"}]}]})

    first = decode_description(raw)
    second = decode_description(raw)

    assert [node.id for node in first.subtasks[0].children] == ["b"]
    assert first == second


def test_unknown_node_keys_survive_reencode() -> None:
    raw = json.dumps(
        {
            "text": "Trip",
            "subtasks": [
                {"id": "a", "title": "Book", "completed": False, "children": [], "dueDate": "2026-05-01"},
            ],
        }
    )

    decoded = decode_description(raw)
    reencoded = json.loads(encode_description(decoded.text, decoded.subtasks))

    assert reencoded["subtasks"][0]["dueDate"] == "2026-05-01"
