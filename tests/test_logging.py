from __future__ import annotations

import json
import logging

from notifier.core.logger import JsonFormatter


def test_json_formatter_carries_extra_fields():
    record = logging.makeLogRecord(
        {"name": "notifier.test", "levelname": "INFO", "msg": "sent %s", "args": ("REM-1",), "order_id": "ORD-001"}
    )

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "sent REM-1"
    assert payload["logger"] == "notifier.test"
    assert payload["extra"] == {"order_id": "ORD-001"}
