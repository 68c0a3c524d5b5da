from flowdiff.schemas import Severity
from flowdiff.validator import validate_flow, value_matches_type


def node(node_id, component_type, parameters=None, position=None):
    return {
        "id": node_id,
        "componentType": component_type,
        "position": position if position is not None else {"x": 0, "y": 0},
        "parameters": parameters if parameters is not None else {},
    }


def test_missing_required_parameter_is_one_error(catalog):
    doc = {"name": "T", "nodes": [node("a", "X")], "edges": []}
    result = validate_flow(doc, catalog)

    assert not result.valid
    assert len(result.issues) == 1
    issue = result.issues[0]
    assert issue.severity == Severity.ERROR
    assert issue.nodeId == "a"
    assert issue.field == "k"


def test_validation_is_idempotent(catalog):
    doc = {"name": "", "nodes": [node("a", "X"), node("b", "Nope"), node("a", "ChatInput")], "edges": []}
    first = validate_flow(doc, catalog)
    second = validate_flow(doc, catalog)
    assert first.model_dump() == second.model_dump()


def test_validation_does_not_mutate(catalog):
    doc = {"name": "T", "nodes": [node("a", "ChatInput", {"input_value": {"value": "x"}})], "edges": []}
    before = repr(doc)
    validate_flow(doc, catalog)
    assert repr(doc) == before


def test_orphan_boundary(catalog):
    two = {"name": "T", "nodes": [node("a", "ChatInput"), node("b", "ChatOutput")], "edges": []}
    orphans = [i for i in validate_flow(two, catalog).warnings if "not connected" in i.message]
    assert sorted(i.nodeId for i in orphans) == ["a", "b"]

    one = {"name": "T", "nodes": [node("a", "ChatInput")], "edges": []}
    assert not [i for i in validate_flow(one, catalog).warnings if "not connected" in i.message]


def test_connected_nodes_are_not_orphans(catalog):
    doc = {
        "name": "T",
        "nodes": [node("a", "ChatInput"), node("b", "ChatOutput")],
        "edges": [{"id": "e1", "source": "a", "target": "b", "targetHandle": "t"}],
    }
    result = validate_flow(doc, catalog)
    assert result.valid
    assert result.issues == []
    assert result.summary.totalNodes == 2
    assert result.summary.totalEdges == 1


def test_missing_nodes_is_fatal(catalog):
    result = validate_flow({"name": "T"}, catalog)
    assert not result.valid
    assert len(result.errors) == 1
    assert "nodes" in result.errors[0].message
    assert result.summary.totalNodes == 0


def test_empty_name(catalog):
    result = validate_flow({"name": " ", "nodes": []}, catalog)
    assert [i.message for i in result.errors] == ["Flow name is required"]


def test_unknown_component_suggests_close_match(catalog):
    result = validate_flow({"name": "T", "nodes": [node("a", "ChatInpt")], "edges": []}, catalog)
    assert len(result.errors) == 1
    assert "ChatInput" in result.errors[0].suggestedFix


def test_duplicate_node_ids(catalog):
    doc = {"name": "T", "nodes": [node("a", "ChatInput"), node("a", "ChatInput")], "edges": []}
    messages = [i.message for i in validate_flow(doc, catalog).errors]
    assert messages == ['Duplicate node ID "a"']


def test_credential_slot_is_a_warning(catalog):
    for value in (None, "", "OPENAI_API_KEY"):
        params = {} if value is None else {"api_key": value}
        result = validate_flow({"name": "T", "nodes": [node("m", "OpenAIModel", params)], "edges": []}, catalog)
        assert result.valid
        assert [i.field for i in result.warnings] == ["api_key"]

    result = validate_flow({"name": "T", "nodes": [node("m", "OpenAIModel", {"api_key": "sk-123"})], "edges": []}, catalog)
    assert result.issues == []


def test_type_mismatch(catalog):
    doc = {"name": "T", "nodes": [node("m", "OpenAIModel", {"api_key": "sk", "temperature": "hot"})], "edges": []}
    result = validate_flow(doc, catalog)
    assert [(i.field, i.severity) for i in result.issues] == [("temperature", Severity.ERROR)]

    doc["nodes"][0]["parameters"]["temperature"] = True
    assert not validate_flow(doc, catalog).valid


def test_unknown_parameter_is_a_warning(catalog):
    doc = {"name": "T", "nodes": [node("a", "ChatInput", {"colour": "red"})], "edges": []}
    result = validate_flow(doc, catalog)
    assert result.valid
    assert [i.field for i in result.warnings] == ["colour"]


def test_invalid_position_is_a_warning(catalog):
    doc = {"name": "T", "nodes": [node("a", "ChatInput", position={"x": "1", "y": 2})], "edges": []}
    result = validate_flow(doc, catalog)
    assert result.valid
    assert "position" in result.warnings[0].message


def test_edge_errors(catalog):
    doc = {
        "name": "T",
        "nodes": [node("a", "ChatInput"), node("b", "ChatOutput")],
        "edges": [
            {"id": "e1", "source": "a", "target": "b", "targetHandle": "t"},
            {"id": "e2", "source": "a", "target": "b", "targetHandle": "t"},
            {"id": "e3", "source": "ghost", "target": "b", "targetHandle": "u"},
            {"id": "e4", "source": "b", "target": "b", "targetHandle": "v"},
        ],
    }
    errors = validate_flow(doc, catalog).errors
    assert [i.edgeId for i in errors] == ["e2", "e3", "e4"]
    assert "Duplicate edge" in errors[0].message
    assert "non-existent source" in errors[1].message
    assert "itself" in errors[2].message


def test_value_matches_type():
    assert value_matches_type(1, "int")
    assert value_matches_type(1.5, "float")
    assert not value_matches_type(True, "float")
    assert value_matches_type({}, "dict")
    assert value_matches_type([], "list")
    assert not value_matches_type("x", "bool")
    assert value_matches_type(object(), "LanguageModel")
