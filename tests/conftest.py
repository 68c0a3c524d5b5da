import pytest

from flowdiff.catalog import ComponentCatalog

COMPONENTS = {
    "inputs": {
        "ChatInput": {
            "displayName": "Chat Input",
            "parameters": [
                {"name": "input_value", "type": "str", "default": ""},
                {"name": "sender_name", "type": "str", "default": "User"},
            ],
            "outputPorts": [{"name": "message", "types": ["Message"]}],
        },
    },
    "outputs": {
        "ChatOutput": {
            "parameters": [{"name": "input_value", "type": "str", "inputTypes": ["Data", "Message"]}],
            "outputPorts": [{"name": "message", "types": ["Message"]}],
        },
    },
    "models": {
        "OpenAIModel": {
            "displayName": "OpenAI",
            "parameters": [
                {"name": "input_value", "type": "str", "inputTypes": ["Message"]},
                {"name": "temperature", "type": "float", "default": 0.1},
                {"name": "model_kwargs", "type": "dict", "default": {}},
                {"name": "api_key", "type": "str", "required": True, "password": True},
            ],
            "outputPorts": [
                {"name": "text_output", "types": ["Message"]},
                {"name": "model_output", "types": ["LanguageModel"]},
            ],
        },
        "X": {"parameters": [{"name": "k", "type": "str", "required": True}]},
    },
}


@pytest.fixture
def catalog():
    return ComponentCatalog.from_mapping(COMPONENTS)


@pytest.fixture
def empty_flow():
    return {"name": "T", "description": "", "nodes": [], "edges": []}
