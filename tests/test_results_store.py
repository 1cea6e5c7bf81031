from pricecheck.models.session import SessionSnapshot, SessionStatus
from pricecheck.results_store import ResultsStore


class TestResultsStore:
    """Test suite for the per-request result store."""

    def test_put_and_get(self, clock):
        store = ResultsStore(ttl_seconds=60, clock=clock)
        store.put(SessionSnapshot(request_id="a", status=SessionStatus.COMPLETED))

        assert store.get("a").status is SessionStatus.COMPLETED
        assert store.get("b") is None

    def test_entries_expire(self, clock):
        store = ResultsStore(ttl_seconds=60, clock=clock)
        store.put(SessionSnapshot(request_id="a"))

        clock.now += 59
        assert store.get("a") is not None
        clock.now += 1
        assert store.get("a") is None
        assert len(store) == 0

    def test_update_refreshes_ttl(self, clock):
        store = ResultsStore(ttl_seconds=60, clock=clock)
        store.put(SessionSnapshot(request_id="a", status=SessionStatus.IN_PROGRESS))
        clock.now += 50
        store.put(SessionSnapshot(request_id="a", status=SessionStatus.COMPLETED))
        clock.now += 50

        assert store.get("a").status is SessionStatus.COMPLETED

    def test_requests_are_isolated(self, clock):
        store = ResultsStore(ttl_seconds=60, clock=clock)
        store.put(SessionSnapshot(request_id="a"))
        store.put(SessionSnapshot(request_id="b"))

        assert len(store) == 2
        assert store.get("a").request_id == "a"
        assert store.get("b").request_id == "b"
