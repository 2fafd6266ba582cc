"""Subscription interface for authentication notifications.

Observers register plain callables and get back an unsubscribe function.
Emission is synchronous on the emitting thread (usually a worker); hosts
with thread-affine UI post the work onto a MainThreadDispatcher inside their
callback.
"""

import threading
from collections.abc import Callable

from graphsession.auth.state import AuthenticationState, DeviceCodePrompt
from graphsession.core.logging import get_logger

logger = get_logger(__name__)

StateCallback = Callable[[AuthenticationState], None]
DeviceCodeCallback = Callable[[DeviceCodePrompt], None]


class AuthEvents:
    """Fan-out of state changes and device-code prompts to any number of observers.

    Delivery is best effort: an observer that raises is logged and skipped.
    Current state is always queryable from the engine, so a missed
    notification is never fatal.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state_callbacks: list[StateCallback] = []
        self._device_code_callbacks: list[DeviceCodeCallback] = []

    def subscribe_state(self, callback: StateCallback) -> Callable[[], None]:
        """Register a state-change observer. Returns a function that unregisters it."""
        with self._lock:
            self._state_callbacks.append(callback)
        return lambda: self._remove(self._state_callbacks, callback)

    def subscribe_device_code(self, callback: DeviceCodeCallback) -> Callable[[], None]:
        """Register a device-code observer. Returns a function that unregisters it."""
        with self._lock:
            self._device_code_callbacks.append(callback)
        return lambda: self._remove(self._device_code_callbacks, callback)

    def _remove(self, callbacks: list, callback: Callable) -> None:
        with self._lock:
            if callback in callbacks:
                callbacks.remove(callback)

    def emit_state(self, state: AuthenticationState) -> None:
        with self._lock:
            callbacks = list(self._state_callbacks)

        logger.debug("Authentication state changed", state=state.value, observers=len(callbacks))
        for callback in callbacks:
            try:
                callback(state)
            except Exception:
                logger.exception("State observer raised", state=state.value)

    def emit_device_code(self, prompt: DeviceCodePrompt) -> None:
        with self._lock:
            callbacks = list(self._device_code_callbacks)

        for callback in callbacks:
            try:
                callback(prompt)
            except Exception:
                logger.exception("Device code observer raised")
