"""
Tests for the security event log.
"""

import pytest

from scrapeguard.storage.database import EventRecorder


@pytest.fixture
async def recorder(tmp_path):
    rec = EventRecorder(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    await rec.init()
    yield rec
    await rec.dispose()


@pytest.mark.asyncio
async def test_record_and_read_back(recorder: EventRecorder):
    assert await recorder.record("1.2.3.4", "challenged", 0.82, "/products", "curl/8", detail="honeypot")
    assert await recorder.record("1.2.3.4", "banned", 0.95, "/products", "curl/8")

    events = await recorder.recent(10)
    assert [e["action"] for e in events] == ["banned", "challenged"]
    assert events[1]["detail"] == "honeypot"
    assert events[0]["score"] == pytest.approx(0.95)
    assert events[0]["timestamp"] is not None


@pytest.mark.asyncio
async def test_recent_respects_limit(recorder: EventRecorder):
    for i in range(5):
        await recorder.record(f"10.0.0.{i}", "challenge_failed")
    events = await recorder.recent(2)
    assert len(events) == 2
    assert events[0]["identity"] == "10.0.0.4"


@pytest.mark.asyncio
async def test_record_never_raises(tmp_path):
    # Tables never created
    rec = EventRecorder(f"sqlite+aiosqlite:///{tmp_path / 'missing.db'}")
    assert await rec.record("1.2.3.4", "banned") is False
    await rec.dispose()
