"""
Tests for the in-process event bus.
"""

from leave_engine.events import EventBus, RequestApproved, RequestCancelled, RequestSubmitted


def approved(n: int) -> RequestApproved:
    return RequestApproved(employee_id="E102", request_id=f"R{n}")


class TestHistory:
    def test_default_bus_keeps_nothing(self):
        bus = EventBus()

        for n in range(50):
            bus.publish(approved(n))

        assert len(bus.published) == 0
        assert bus.of_type(RequestApproved) == []

    def test_history_is_capped_to_the_latest_events(self):
        bus = EventBus(history=3)

        for n in range(10):
            bus.publish(approved(n))

        assert [event.request_id for event in bus.published] == ["R7", "R8", "R9"]

    def test_of_type_filters_history(self):
        bus = EventBus(history=10)
        bus.publish(approved(1))
        bus.publish(RequestCancelled(employee_id="E102", request_id="R2"))

        [event] = bus.of_type(RequestCancelled)
        assert event.request_id == "R2"


class TestDelivery:
    def test_subscribers_run_without_history(self):
        bus = EventBus()
        seen = []
        bus.subscribe(RequestApproved, seen.append)

        bus.publish(approved(1))

        assert [event.request_id for event in seen] == ["R1"]

    def test_failing_subscriber_does_not_stop_the_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("mail server down")

        bus.subscribe(RequestSubmitted, broken)
        bus.subscribe(RequestSubmitted, seen.append)

        bus.publish(RequestSubmitted(employee_id="E102", request_id="R1", leave_type_code="CL", total_days=1))

        assert len(seen) == 1
