import threading

import pytest

from bomabnb.observability import get_counter_value
from bomabnb.services.inflight import ALREADY_PROCESSING_MESSAGE, InFlightError, InFlightRegistry


def test_claim_rejects_duplicates_and_releases():
    registry = InFlightRegistry()

    with registry.claim(("booking", 1)):
        assert registry.is_in_flight(("booking", 1))
        with pytest.raises(InFlightError, match=ALREADY_PROCESSING_MESSAGE):
            with registry.claim(("booking", 1)):
                pass
        # other entities are independent
        with registry.claim(("booking", 2)):
            pass

    assert not registry.is_in_flight(("booking", 1))
    assert get_counter_value("inflight_rejections_total", {"entity": "booking"}) == 1


def test_claim_is_released_when_the_body_raises():
    registry = InFlightRegistry()

    with pytest.raises(RuntimeError):
        with registry.claim("partner:5"):
            raise RuntimeError("boom")

    assert registry.try_acquire("partner:5") is True


def test_only_one_thread_wins():
    registry = InFlightRegistry()
    barrier = threading.Barrier(8)
    winners = []

    def attempt():
        barrier.wait()
        if registry.try_acquire("feature_request:1"):
            winners.append(threading.current_thread().name)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
