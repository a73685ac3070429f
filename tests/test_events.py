"""Event sinks."""

import logging

from typeshape.tools.events import NULL_SINK, CollectingSink, Event, LoggingSink


def test_null_sink_accepts_anything():
    assert NULL_SINK.emit("x", a=1) is None


def test_collecting_sink():
    sink = CollectingSink()
    sink.emit("expand.type", name="User", shapes=2)
    sink.emit("optimize.start", name="User", shapes=2)
    assert sink.kinds() == ["expand.type", "optimize.start"]
    assert sink.of_kind("expand.type") == [Event("expand.type", {"name": "User", "shapes": 2})]


def test_logging_sink(caplog):
    caplog.set_level(logging.DEBUG, logger="typeshape.events")
    LoggingSink().emit("optimize.decision", reason="generic", name="T")
    assert caplog.records[-1].getMessage() == 'optimize.decision {"name": "T", "reason": "generic"}'


def test_logging_sink_skips_disabled_level(caplog):
    caplog.set_level(logging.WARNING, logger="typeshape.events")
    LoggingSink().emit("optimize.decision", reason="generic")
    assert not caplog.records
