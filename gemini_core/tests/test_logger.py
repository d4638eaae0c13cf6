import json
import logging

from gemini_core.infrastructure.logging.logger import REDACT_LIMIT, JsonFormatter


def make_record(msg, **fields):
    record = logging.LogRecord("gemini_core", logging.INFO, __file__, 1, msg, None, None)
    record.extra = fields
    return record


def test_json_line_merges_fields_and_drops_none():
    line = JsonFormatter().format(make_record("Attached a.txt", size=3, credential_index=None))
    doc = json.loads(line)
    assert doc["level"] == "INFO"
    assert doc["name"] == "gemini_core"
    assert doc["msg"] == "Attached a.txt"
    assert doc["size"] == 3
    assert "credential_index" not in doc
    assert doc["ts"].endswith("Z")


def test_redaction_truncates_message():
    doc = json.loads(JsonFormatter(redact=True).format(make_record("x" * 500)))
    assert len(doc["msg"]) == REDACT_LIMIT
