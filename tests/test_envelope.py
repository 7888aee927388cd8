"""
FastConnect response envelope.

TESTS:
    1. Success statuses: 200, "200", "SUCCESS", "ok" (trimmed, any case).
    2. Anything else -> BrokerError with the upstream message.
    3. dataList preferred over data.
    4. Non-object bodies -> DecodeError.
    5. as_records() accepts None / dict / list and rejects scalars.
"""

import json

import pytest

from vnconnector.errors import BrokerError, DecodeError
from vnconnector.net import envelope


class TestStatus:

    @pytest.mark.parametrize("status", [200, 200.0, "200", "SUCCESS", " success ", "Ok"])
    def test_success(self, status):
        assert envelope.is_success(status)

    @pytest.mark.parametrize("status", [400, "400", "FAILED", "", None, True])
    def test_failure(self, status):
        assert not envelope.is_success(status)

    def test_failure_raises_with_message(self):
        with pytest.raises(BrokerError, match="Symbol is invalid") as exc:
            envelope.unwrap(json.dumps({"status": 400, "message": "Symbol is invalid", "data": None}))
        assert exc.value.status == 400

    def test_failure_without_message_uses_default(self):
        with pytest.raises(BrokerError, match="ssi api failed"):
            envelope.unwrap(json.dumps({"status": "FAILED"}))


class TestPayload:

    def test_datalist_preferred(self):
        body = json.dumps({"status": 200, "data": {"a": 1}, "dataList": [{"b": 2}]})
        assert envelope.unwrap(body) == [{"b": 2}]

    def test_falls_back_to_data(self):
        body = json.dumps({"status": 200, "data": {"a": 1}})
        assert envelope.unwrap(body) == {"a": 1}

    @pytest.mark.parametrize("text", ["[1, 2]", '"text"', "not json", ""])
    def test_non_object_body(self, text):
        with pytest.raises(DecodeError):
            envelope.decode(text)

    def test_as_records(self):
        assert envelope.as_records(None) == []
        assert envelope.as_records({"a": 1}) == [{"a": 1}]
        assert envelope.as_records([{"a": 1}, "junk", {"b": 2}]) == [{"a": 1}, {"b": 2}]
        with pytest.raises(DecodeError):
            envelope.as_records(42)
