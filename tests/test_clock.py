from datetime import datetime, timedelta, timezone

from consult_queue.core.clock import utcnow


def test_utcnow_is_naive_utc():
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    now = utcnow()

    assert now.tzinfo is None
    assert before <= now < before + timedelta(seconds=5)
