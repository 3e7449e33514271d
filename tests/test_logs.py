"""Tests for the event log formatter."""

import logging

from bondly_api.airdrop.events import AirdropEvent
from bondly_api.logs import LOG_FORMAT, EventFormatter


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("bondly_api.test", logging.INFO, __file__, 1, "Airdrop %d", (7,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_event_and_fields_are_appended() -> None:
    formatter = EventFormatter(LOG_FORMAT)

    line = formatter.format(make_record(event=AirdropEvent.SUBMITTED, tx_hash="0xabc"))

    assert "Airdrop 7" in line
    assert line.endswith("[event=airdrop.submitted tx_hash=0xabc]")


def test_plain_record_unchanged() -> None:
    formatter = EventFormatter("%(message)s")
    assert formatter.format(make_record()) == "Airdrop 7"
