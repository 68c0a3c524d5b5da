import unittest

from flowdiff.catalog import ComponentCatalog
from flowdiff.handles import (
    SENTINEL,
    build_source_handle,
    build_target_handle,
    decode_handle,
    encode_handle,
    edge_id,
    handle_field_name,
    resolve_edge_handles,
    try_decode_handle,
)


def make_catalog():
    return ComponentCatalog.from_mapping({
        "LLM": {
            "parameters": [{"name": "prompt", "type": "str", "inputTypes": ["Message", "Text"]}],
            "outputPorts": [{"name": "text_output", "types": ["Message"]}, {"name": "model", "types": ["LanguageModel"]}],
        },
        "Sink": {"parameters": [{"name": "input_value", "type": "str"}]},
    })


class TestHandleCodec(unittest.TestCase):
    def test_keys_sorted_and_quotes_replaced(self):
        encoded = encode_handle({"name": "x", "id": "n1", "dataType": "LLM"})
        self.assertEqual(encoded, f"{{{SENTINEL}dataType{SENTINEL}:{SENTINEL}LLM{SENTINEL},"
                                  f"{SENTINEL}id{SENTINEL}:{SENTINEL}n1{SENTINEL},"
                                  f"{SENTINEL}name{SENTINEL}:{SENTINEL}x{SENTINEL}}}")
        self.assertNotIn('"', encoded)
        self.assertNotIn(" ", encoded)

    def test_decode_reverses_encode(self):
        payload = {"fieldName": "prompt", "id": "n2", "inputTypes": ["Message"], "type": "str"}
        self.assertEqual(decode_handle(encode_handle(payload)), payload)

    def test_decode_accepts_raw_json(self):
        self.assertEqual(decode_handle('{"a": 1}'), {"a": 1})

    def test_decode_rejects_non_objects(self):
        with self.assertRaises(ValueError):
            decode_handle("[1, 2]")
        with self.assertRaises(ValueError):
            decode_handle("not json")
        self.assertIsNone(try_decode_handle("not json"))
        self.assertIsNone(try_decode_handle(None))
        self.assertIsNone(try_decode_handle({"fieldName": "x"}))
        self.assertIsNone(handle_field_name(42))


class TestHandleSynthesis(unittest.TestCase):
    def setUp(self):
        self.catalog = make_catalog()

    def test_source_handle_uses_first_output_port(self):
        node = {"id": "n1", "componentType": "LLM", "outputPorts": []}
        payload = decode_handle(build_source_handle(node, self.catalog))
        self.assertEqual(payload, {"dataType": "LLM", "id": "n1", "name": "text_output", "output_types": ["Message"]})

    def test_source_handle_named_output(self):
        node = {"id": "n1", "componentType": "LLM"}
        payload = decode_handle(build_source_handle(node, self.catalog, "model"))
        self.assertEqual(payload["name"], "model")
        self.assertEqual(payload["output_types"], ["LanguageModel"])

    def test_source_handle_fallback_port(self):
        node = {"id": "n1", "componentType": "Unknown"}
        payload = decode_handle(build_source_handle(node, self.catalog))
        self.assertEqual(payload["name"], "output")
        self.assertEqual(payload["output_types"], ["Message"])

    def test_target_handle_from_catalog_param(self):
        node = {"id": "n2", "componentType": "LLM"}
        payload = decode_handle(build_target_handle(node, self.catalog, "prompt"))
        self.assertEqual(payload, {"fieldName": "prompt", "id": "n2", "inputTypes": ["Message", "Text"], "type": "str"})

    def test_target_handle_defaults(self):
        node = {"id": "n2", "componentType": "Sink"}
        payload = decode_handle(build_target_handle(node, self.catalog, "input_value"))
        self.assertEqual(payload["inputTypes"], ["Message"])
        self.assertEqual(payload["type"], "str")
        self.assertEqual(handle_field_name(encode_handle(payload)), "input_value")

    def test_existing_handles_are_copied(self):
        source = {"id": "a", "componentType": "LLM"}
        target = {"id": "b", "componentType": "Sink"}
        doc = {"edges": [
            {"source": "a", "target": "z", "sourceHandle": "existing-source", "targetHandle": "t"},
        ]}
        source_handle, target_handle = resolve_edge_handles(doc, source, target, self.catalog)
        self.assertEqual(source_handle, "existing-source")
        self.assertEqual(handle_field_name(target_handle), "input_value")

    def test_edge_id_convention(self):
        self.assertEqual(edge_id("a", "S", "b", "T"), "reactflow__edge-aS-bT")


if __name__ == "__main__":
    unittest.main()
