import json

import pytest

from engines.validation import CatalogConfigError, InvalidTopic
from topic_graph import DEFAULT_CATALOG, TopicGraph, default_topic_graph


def test_default_catalog_preserves_declaration_order():
    graph = default_topic_graph()

    assert graph.topics()[0] == "Arrays"
    assert graph.topics() == [entry["name"] for entry in DEFAULT_CATALOG["topics"]]
    assert len(graph) == len(DEFAULT_CATALOG["topics"])


def test_prerequisites_keep_edge_order_and_weights():
    graph = default_topic_graph()

    assert graph.prerequisites_of("Binary Search Trees") == [
        ("Trees", 1.0),
        ("Binary Search", 0.7),
    ]
    assert graph.prerequisites_of("Arrays") == []
    assert "Heaps" in graph.dependents_of("Trees")


def test_ancestors_follow_transitive_prerequisites():
    graph = default_topic_graph()

    ancestors = graph.ancestors("Binary Search Trees")

    assert {"Trees", "Binary Search", "Sorting", "Arrays", "Recursion", "Linked Lists"} == set(ancestors)


def test_unknown_topic_raises_invalid_topic():
    graph = default_topic_graph()

    with pytest.raises(InvalidTopic) as excinfo:
        graph.prerequisites_of("Quantum Sorting")

    assert excinfo.value.topic == "Quantum Sorting"
    assert "known topics" in str(excinfo.value)


def test_cycle_is_rejected_at_load_time():
    payload = {
        "topics": ["A", "B", "C"],
        "prerequisites": [
            {"topic": "B", "prerequisite": "A"},
            {"topic": "C", "prerequisite": "B"},
            {"topic": "A", "prerequisite": "C"},
        ],
    }

    with pytest.raises(CatalogConfigError, match="cycle"):
        TopicGraph.from_dict(payload)


def test_unknown_prerequisite_is_rejected():
    payload = {
        "topics": ["A"],
        "prerequisites": [{"topic": "A", "prerequisite": "Missing"}],
    }

    with pytest.raises(CatalogConfigError, match="unknown prerequisite"):
        TopicGraph.from_dict(payload)


@pytest.mark.parametrize("weight", [0.0, -0.2, 1.5])
def test_weight_outside_unit_interval_is_rejected(weight):
    graph = TopicGraph()
    graph.add_topic("A")
    graph.add_topic("B")

    with pytest.raises(CatalogConfigError):
        graph.add_prerequisite("B", "A", weight)


def test_duplicate_topics_and_self_edges_are_rejected():
    graph = TopicGraph()
    graph.add_topic("A")

    with pytest.raises(CatalogConfigError):
        graph.add_topic("A")
    with pytest.raises(CatalogConfigError):
        graph.add_prerequisite("A", "A")
    with pytest.raises(CatalogConfigError):
        graph.add_topic("B", default_mastery=1.2)


def test_empty_catalog_fails_validation():
    with pytest.raises(CatalogConfigError, match="empty"):
        TopicGraph().validate()


def test_mapping_topics_carry_default_mastery():
    graph = TopicGraph.from_dict({"topics": {"Intro": 0.4, "Advanced": 0.0}})

    assert graph.default_mastery("Intro") == pytest.approx(0.4)
    assert graph.default_knowledge() == {"Intro": 0.4, "Advanced": 0.0}


def test_load_yaml_catalog(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(
        "\n".join(
            [
                "topics:",
                "  - name: Variables",
                "  - name: Loops",
                "    default_mastery: 0.2",
                "prerequisites:",
                "  - topic: Loops",
                "    prerequisite: Variables",
                "    weight: 0.5",
            ]
        ),
        encoding="utf-8",
    )

    graph = TopicGraph.load(path)

    assert graph.topics() == ["Variables", "Loops"]
    assert graph.prerequisites_of("Loops") == [("Variables", 0.5)]
    assert graph.default_mastery("Loops") == pytest.approx(0.2)


def test_json_round_trip_through_save(tmp_path):
    path = tmp_path / "catalog.json"
    default_topic_graph().save_json(path)

    loaded = TopicGraph.load(path)

    assert loaded.to_dict() == default_topic_graph().to_dict()
    assert json.loads(path.read_text())["topics"][0]["name"] == "Arrays"


def test_unsupported_catalog_format(tmp_path):
    path = tmp_path / "catalog.txt"
    path.write_text("Arrays", encoding="utf-8")

    with pytest.raises(CatalogConfigError, match="Unsupported"):
        TopicGraph.load(path)


@pytest.mark.parametrize(
    "payload",
    [
        ["Arrays", "Loops"],
        "Arrays",
        {"topics": "Arrays"},
        {"topics": [{"name": None}]},
        {"topics": [42]},
        {"topics": [{"name": "A", "default_mastery": None}]},
        {"topics": [{"name": "A", "default_mastery": "high"}]},
        {"topics": {"A": True}},
        {"topics": ["A", "B"], "prerequisites": {"topic": "B", "prerequisite": "A"}},
        {"topics": ["A", "B"], "prerequisites": ["B"]},
        {"topics": ["A", "B"], "prerequisites": [{"topic": "B", "prerequisite": "A", "weight": "heavy"}]},
        {"topics": ["A", "B"], "prerequisites": [{"topic": "B", "prerequisite": "A", "weight": None}]},
    ],
)
def test_malformed_catalog_values_raise_catalog_error(payload):
    with pytest.raises(CatalogConfigError):
        TopicGraph.from_dict(payload)


def test_null_mapping_value_uses_zero_default():
    graph = TopicGraph.from_dict({"topics": {"Intro": None}, "prerequisites": None})

    assert graph.default_mastery("Intro") == 0.0


@pytest.mark.parametrize(
    "filename, text",
    [
        ("catalog.yaml", "- Arrays\n- Loops\n"),
        ("catalog.yaml", "topics: [Arrays\n"),
        ("catalog.json", '{"topics": ["Arrays",'),
        ("catalog.json", '["Arrays"]'),
    ],
)
def test_unreadable_catalog_file_raises_catalog_error(tmp_path, filename, text):
    path = tmp_path / filename
    path.write_text(text, encoding="utf-8")

    with pytest.raises(CatalogConfigError):
        TopicGraph.load(path)
