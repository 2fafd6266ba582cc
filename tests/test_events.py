"""Tests for auth/events.py notification fan-out."""

from graphsession.auth.events import AuthEvents
from graphsession.auth.state import AuthenticationState, DeviceCodePrompt


class TestAuthEvents:
    """Tests for AuthEvents."""

    def test_all_state_observers_notified_in_subscription_order(self) -> None:
        events = AuthEvents()
        received: list[str] = []
        events.subscribe_state(lambda s: received.append(f"a:{s.value}"))
        events.subscribe_state(lambda s: received.append(f"b:{s.value}"))

        events.emit_state(AuthenticationState.COMPLETED)

        assert received == ["a:completed", "b:completed"]

    def test_unsubscribe_stops_delivery(self) -> None:
        """The function returned by subscribe_state removes the observer."""
        events = AuthEvents()
        received: list[AuthenticationState] = []
        unsubscribe = events.subscribe_state(received.append)

        events.emit_state(AuthenticationState.STARTED_INTERACTIVE)
        unsubscribe()
        events.emit_state(AuthenticationState.COMPLETED)

        assert received == [AuthenticationState.STARTED_INTERACTIVE]

    def test_unsubscribe_twice_is_harmless(self) -> None:
        events = AuthEvents()
        unsubscribe = events.subscribe_device_code(lambda p: None)
        unsubscribe()
        unsubscribe()

    def test_raising_observer_does_not_block_others(self) -> None:
        """An observer that raises is skipped; later observers still run."""
        events = AuthEvents()
        received: list[AuthenticationState] = []

        def broken(state: AuthenticationState) -> None:
            raise RuntimeError("observer bug")

        events.subscribe_state(broken)
        events.subscribe_state(received.append)

        events.emit_state(AuthenticationState.FAILED)

        assert received == [AuthenticationState.FAILED]

    def test_device_code_delivered(self) -> None:
        events = AuthEvents()
        prompts: list[DeviceCodePrompt] = []
        events.subscribe_device_code(prompts.append)

        prompt = DeviceCodePrompt("https://microsoft.com/devicelogin", "ABCD-1234")
        events.emit_device_code(prompt)

        assert prompts == [prompt]

    def test_observer_may_unsubscribe_during_emit(self) -> None:
        """Emission iterates a snapshot, so self-removal is safe."""
        events = AuthEvents()
        calls: list[str] = []
        unsubscribe_holder: list = []

        def once(state: AuthenticationState) -> None:
            calls.append("once")
            unsubscribe_holder[0]()

        unsubscribe_holder.append(events.subscribe_state(once))
        events.subscribe_state(lambda s: calls.append("always"))

        events.emit_state(AuthenticationState.COMPLETED)
        events.emit_state(AuthenticationState.COMPLETED)

        assert calls == ["once", "always", "always"]
