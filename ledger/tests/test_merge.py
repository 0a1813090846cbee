import pytest

from ledger.merge import InvalidDocument, load_document, merge


class TestMerge:
    """Tests for shallow override-wins merging."""

    def test_patch_overrides_base(self):
        assert merge({"a": 1, "b": 2}, {"b": 3, "c": 4}) == {"a": 1, "b": 3, "c": 4}

    def test_missing_base(self):
        assert merge(None, {"x": 1}) == {"x": 1}

    def test_missing_patch(self):
        assert merge({"x": 1}, None) == {"x": 1}

    def test_both_missing(self):
        assert merge(None, None) == {}

    def test_nested_objects_replaced_wholesale(self):
        """Nested documents are not deep-merged."""
        merged = merge({"meta": {"a": 1, "b": 2}}, {"meta": {"c": 3}})
        assert merged == {"meta": {"c": 3}}

    def test_text_inputs_are_parsed(self):
        assert merge('{"a": 1}', '{"b": 2}') == {"a": 1, "b": 2}

    def test_mixed_text_and_structure(self):
        assert merge({"a": 1}, b'{"a": 5}') == {"a": 5}

    def test_blank_text_is_empty(self):
        assert merge("", "   ") == {}

    def test_inputs_not_mutated(self):
        base, patch = {"a": 1}, {"a": 2}
        merge(base, patch)
        assert base == {"a": 1}
        assert patch == {"a": 2}


class TestInvalidDocument:
    """Tests for rejected inputs."""

    def test_malformed_text_patch(self):
        with pytest.raises(InvalidDocument):
            merge({"a": 1}, "{bad json")

    def test_malformed_text_base(self):
        with pytest.raises(InvalidDocument):
            merge("not json", None)

    def test_non_object_json(self):
        """Well-formed JSON that is not an object is not a document."""
        with pytest.raises(InvalidDocument):
            load_document("[1, 2, 3]")

    def test_non_mapping_structure(self):
        with pytest.raises(InvalidDocument):
            load_document(42)
