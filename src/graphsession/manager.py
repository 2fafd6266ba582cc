"""Host-facing entry point: one object wiring config, cache, engine, Graph and dispatcher.

Hosts with a single UI thread (game loops, GUI toolkits) use it like this:

    manager = GraphSessionManager.from_config(get_config())
    manager.callbacks.on_device_code = show_code_panel
    manager.callbacks.on_completed = hide_panels

    manager.submit_sign_in()        # runs on a worker thread

    while running:                  # host loop
        manager.tick()              # callbacks fire here, on the host thread

Engine notifications are raised on worker threads; the manager posts them
to a MainThreadDispatcher so host callbacks only ever run inside tick().
"""

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, TypeVar

from graphsession.auth.engine import TokenAcquisitionEngine
from graphsession.auth.events import AuthEvents
from graphsession.auth.protection import create_protector
from graphsession.auth.state import AuthenticationState, DeviceCodePrompt
from graphsession.auth.token_cache import PersistentTokenCache
from graphsession.config_schema import AppConfig
from graphsession.core.dispatch import MainThreadDispatcher
from graphsession.core.logging import get_logger
from graphsession.graph.client import GraphClient
from graphsession.graph.drive import DriveManager

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_WORKERS = 2


@dataclass
class SessionCallbacks:
    """Host callbacks, each optional. All run on the host thread during tick()."""

    on_interactive_started: Callable[[], None] | None = None
    on_device_code: Callable[[str, str], None] | None = None
    on_completed: Callable[[], None] | None = None
    on_failed: Callable[[], None] | None = None
    on_signed_out: Callable[[], None] | None = None


class GraphSessionManager:
    """Owns the authentication stack for one application.

    Attributes:
        engine: Sign-in state machine
        token_cache: Persistent MSAL cache backing the engine (may be None
            when the engine was built with its own cache)
        dispatcher: Queue drained by tick()
        callbacks: Host callbacks invoked from tick()
        graph: Pre-authenticated Graph client
        drive: OneDrive helper built on graph
    """

    def __init__(
        self,
        engine: TokenAcquisitionEngine,
        graph: GraphClient | None = None,
        token_cache: PersistentTokenCache | None = None,
        dispatcher: MainThreadDispatcher | None = None,
        callbacks: SessionCallbacks | None = None,
        max_workers: int = DEFAULT_WORKERS,
    ):
        self.engine = engine
        self.token_cache = token_cache
        self.dispatcher = dispatcher or MainThreadDispatcher()
        self.callbacks = callbacks or SessionCallbacks()
        self.graph = graph or GraphClient(engine)
        self.drive = DriveManager(self.graph)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="graphsession"
        )

        self._unsubscribe = [
            engine.events.subscribe_state(self._on_state),
            engine.events.subscribe_device_code(self._on_device_code),
        ]

    @classmethod
    def from_config(cls, config: AppConfig, **kwargs: Any) -> "GraphSessionManager":
        """Build the full stack from validated configuration.

        Raises:
            ConfigurationError: Invalid settings, a missing 'fernet' key, or
                'keyring' protection on a platform without a keyring
        """
        protector = create_protector(config.token_cache)
        token_cache = PersistentTokenCache(config.token_cache.path, protector)
        engine = TokenAcquisitionEngine.from_config(config.auth, token_cache=token_cache, events=AuthEvents())
        graph = GraphClient(
            engine,
            base_url=config.graph.base_url,
            max_retries=config.graph.max_retries,
            timeout=config.graph.timeout_seconds,
        )
        return cls(engine, graph=graph, token_cache=token_cache, **kwargs)

    # ------------------------------------------------------------------
    # Engine notifications (worker threads) -> dispatcher
    # ------------------------------------------------------------------

    def _on_state(self, state: AuthenticationState) -> None:
        callback = {
            AuthenticationState.STARTED_INTERACTIVE: self.callbacks.on_interactive_started,
            AuthenticationState.COMPLETED: self.callbacks.on_completed,
            AuthenticationState.FAILED: self.callbacks.on_failed,
            AuthenticationState.SIGN_OUT: self.callbacks.on_signed_out,
        }.get(state)
        # FALLBACK_TO_DEVICE_CODE has no host callback; on_device_code follows it
        if callback is not None:
            self.dispatcher.post(callback)

    def _on_device_code(self, prompt: DeviceCodePrompt) -> None:
        if self.callbacks.on_device_code is not None:
            self.dispatcher.post(self.callbacks.on_device_code, prompt.verification_url, prompt.user_code)

    # ------------------------------------------------------------------
    # Host API
    # ------------------------------------------------------------------

    def tick(self, timeout: float | None = None) -> int:
        """Run pending host callbacks. Call once per frame from the host thread."""
        return self.dispatcher.drain_pending(timeout=timeout)

    @property
    def is_connected(self) -> bool:
        return self.engine.is_connected

    def submit(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        """Run any blocking call (engine or Graph) on the worker pool."""
        return self._executor.submit(func, *args, **kwargs)

    def submit_sign_in(self) -> "Future[None]":
        return self.submit(self.engine.force_interactive_sign_in)

    def submit_sign_out(self) -> "Future[None]":
        return self.submit(self.engine.sign_out)

    def close(self) -> None:
        """Stop observing the engine and release the worker pool and HTTP session."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.graph.close()

    def __enter__(self) -> "GraphSessionManager":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
