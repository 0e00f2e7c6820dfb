import pytest

from mnemo.core.errors import MalformedOutputError
from mnemo.core.json_utils import extract_json_object


def test_extracts_fenced_object():
    assert extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}


def test_repairs_trailing_comma():
    assert extract_json_object('Sure! {"topics": ["a", "b",],}') == {"topics": ["a", "b"]}


@pytest.mark.parametrize("raw", ["", "   ", "no json here"])
def test_rejects_missing_object(raw):
    with pytest.raises(MalformedOutputError):
        extract_json_object(raw)
