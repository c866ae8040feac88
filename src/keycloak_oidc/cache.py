"""Credential cache: one background worker per provider slot.

Each ``CredentialCache`` owns a worker thread and a mailbox. Reads and
timer-driven refreshes are handled by that thread strictly in arrival order,
so the snapshot is only ever written by its owner and replaced in one
assignment. A read issued while a refresh is doing network I/O waits behind
it and then sees the new snapshot; it never sees half of one.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from .errors import InvalidConfigError, ProviderNotFoundError, ProviderUnavailableError
from .fetcher import DocumentFetcher
from .keys import describe_key_set
from .refresh import RefreshFailed, RefreshResult, update_documents
from .telemetry import get_logger, trace_operation
from .ttl import next_refresh_delay

if TYPE_CHECKING:
    from .config import ProviderConfig
    from .keys import KeySet
    from .models import CredentialSnapshot
    from .refresh import Fetcher

T = TypeVar("T")

DEFAULT_PROVIDER = "default"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs ``callback`` once after ``delay`` seconds unless cancelled."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """``Scheduler`` backed by ``threading.Timer``."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(frozen=True)
class ProviderStatus:
    """Observable refresh state of one provider slot."""

    provider: str
    refreshed_at: datetime | None
    remaining_lifetime: int | None
    next_refresh_delay: float | None
    consecutive_failures: int
    last_failure: RefreshFailed | None


@dataclass
class _Call:
    handler: Callable[[], Any]
    reply: Future


@dataclass
class _RefreshDue:
    reply: Future | None = None


class _Stop:
    pass


class CredentialCache:
    """Owns the credential snapshot of one provider slot.

    ``start()`` performs the initial refresh and raises
    ``ProviderUnavailableError`` if it fails, so a started cache always has a
    snapshot. Later failed refreshes keep the last good snapshot and retry
    with backoff (``RefreshConfig.failure_delay``).
    """

    def __init__(
        self,
        provider: str,
        config: ProviderConfig,
        fetcher: Fetcher,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self._fetcher = fetcher
        self._scheduler = scheduler or ThreadingScheduler()
        self._logger = get_logger(provider=provider, realm=config.realm)

        self._mailbox: queue.Queue[_Call | _RefreshDue | _Stop] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._running = False

        # Owned by the worker thread once started.
        self._snapshot: CredentialSnapshot | None = None
        self._timer: TimerHandle | None = None
        self._next_delay: float | None = None
        self._failures = 0
        self._last_failure: RefreshFailed | None = None

    # Lifecycle

    def start(self) -> None:
        """Start the worker and block until the initial refresh completes.

        Raises:
            ProviderUnavailableError: If the initial refresh fails.
        """
        if self._running:
            return

        initial: Future = Future()
        self._mailbox.put(_RefreshDue(reply=initial))
        self._running = True
        self._thread = threading.Thread(
            target=self._run,
            name=f"keycloak-oidc-{self.provider}",
            daemon=True,
        )
        self._thread.start()

        try:
            result: RefreshResult = initial.result()
        except Exception as e:
            self.stop()
            raise ProviderUnavailableError(
                self.provider,
                f"Initial refresh of provider {self.provider} crashed: {e}",
            ) from e

        if isinstance(result, RefreshFailed):
            self.stop()
            raise ProviderUnavailableError(
                self.provider,
                f"Initial refresh of provider {self.provider} failed: {result.reason}",
                stage=result.stage.value,
            )

    def stop(self, timeout: float | None = 5.0) -> None:
        """Cancel the pending refresh and stop the worker."""
        if not self._running:
            return
        self._running = False
        self._mailbox.put(_Stop())
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._running

    # Synchronous reads

    def get_snapshot(self) -> CredentialSnapshot:
        return self._call(lambda: self._snapshot)

    def get_discovery_document(self) -> Mapping[str, Any]:
        return self._call(lambda: self._snapshot.discovery_document)

    def get_key_set(self) -> KeySet:
        return self._call(lambda: self._snapshot.key_set)

    def get_config(self) -> ProviderConfig:
        return self._call(lambda: self.config)

    def status(self) -> ProviderStatus:
        def build() -> ProviderStatus:
            snapshot = self._snapshot
            return ProviderStatus(
                provider=self.provider,
                refreshed_at=snapshot.fetched_at if snapshot else None,
                remaining_lifetime=snapshot.remaining_lifetime if snapshot else None,
                next_refresh_delay=self._next_delay,
                consecutive_failures=self._failures,
                last_failure=self._last_failure,
            )

        return self._call(build)

    def _call(self, handler: Callable[[], T]) -> T:
        if not self._running:
            raise ProviderUnavailableError(self.provider, f"Provider {self.provider} is not running")

        reply: Future = Future()
        self._mailbox.put(_Call(handler, reply))
        try:
            return reply.result(timeout=self.config.refresh.call_timeout)
        except FutureTimeoutError as e:
            raise ProviderUnavailableError(
                self.provider,
                f"Timed out waiting for provider {self.provider}",
            ) from e

    # Worker

    def _run(self) -> None:
        while True:
            message = self._mailbox.get()
            if isinstance(message, _Stop):
                break
            if isinstance(message, _RefreshDue):
                self._handle_refresh(message.reply)
            elif isinstance(message, _Call):
                self._handle_call(message)

        self._cancel_timer()
        self._drain()

    def _handle_call(self, message: _Call) -> None:
        try:
            message.reply.set_result(message.handler())
        except Exception as e:
            message.reply.set_exception(e)

    def _handle_refresh(self, reply: Future | None) -> None:
        initial = self._snapshot is None
        with trace_operation(
            "keycloak.refresh",
            attributes={"keycloak.provider": self.provider, "keycloak.initial": initial},
        ) as span:
            try:
                result = update_documents(self._fetcher, self.config)
            except Exception as e:
                self._logger.exception("refresh crashed", error=str(e))
                if reply is not None:
                    reply.set_exception(e)
                if not initial:
                    self._record_failure(None)
                return

            if isinstance(result, RefreshFailed):
                span.add_event(
                    "refresh_failed",
                    {"stage": result.stage.value, "reason": result.reason},
                )
                if not initial:
                    self._record_failure(result)
                else:
                    self._logger.error(
                        "initial refresh failed",
                        stage=result.stage.value,
                        reason=result.reason,
                    )
            else:
                self._record_success(result.snapshot)

        if reply is not None:
            reply.set_result(result)

    def _record_success(self, snapshot: CredentialSnapshot) -> None:
        self._snapshot = snapshot
        self._failures = 0
        self._last_failure = None
        delay = next_refresh_delay(
            snapshot.remaining_lifetime,
            self.config.refresh.default_refresh_seconds,
        )
        self._logger.info(
            "credentials refreshed",
            remaining_lifetime=snapshot.remaining_lifetime,
            delay=delay,
            keys=describe_key_set(snapshot.key_set),
        )
        self._arm(delay)

    def _record_failure(self, failure: RefreshFailed | None) -> None:
        self._failures += 1
        self._last_failure = failure
        delay = self.config.refresh.failure_delay(self._failures)
        self._logger.warning(
            "refresh failed, keeping last snapshot",
            stage=failure.stage.value if failure else None,
            reason=failure.reason if failure else None,
            consecutive_failures=self._failures,
            delay=delay,
        )
        self._arm(delay)

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        self._next_delay = delay
        if self._running:
            self._timer = self._scheduler.call_later(delay, self._fire)

    def _fire(self) -> None:
        if self._running:
            self._mailbox.put(_RefreshDue())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _drain(self) -> None:
        while True:
            try:
                message = self._mailbox.get_nowait()
            except queue.Empty:
                return
            reply = getattr(message, "reply", None)
            if reply is not None and not reply.done():
                reply.set_exception(
                    ProviderUnavailableError(self.provider, f"Provider {self.provider} stopped")
                )


class ProviderRegistry:
    """Named provider slots, each backed by its own ``CredentialCache``."""

    def __init__(
        self,
        configs: ProviderConfig | Mapping[str, ProviderConfig],
        *,
        fetcher_factory: Callable[[ProviderConfig], DocumentFetcher] = DocumentFetcher,
        scheduler: Scheduler | None = None,
    ) -> None:
        if not isinstance(configs, Mapping):
            configs = {DEFAULT_PROVIDER: configs}
        self._configs = dict(configs)
        if not self._configs:
            raise InvalidConfigError("At least one provider must be configured", field="providers")
        self._fetcher_factory = fetcher_factory
        self._scheduler = scheduler
        self._fetchers: dict[str, DocumentFetcher] = {}
        self._caches: dict[str, CredentialCache] = {}

    def __enter__(self) -> ProviderRegistry:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    @property
    def providers(self) -> list[str]:
        return list(self._configs)

    def start(self) -> None:
        """Start every provider slot; stop those already started on failure."""
        for name, config in self._configs.items():
            if name in self._caches:
                continue
            fetcher = self._fetcher_factory(config)
            cache = CredentialCache(name, config, fetcher, scheduler=self._scheduler)
            try:
                cache.start()
            except ProviderUnavailableError:
                _close(fetcher)
                self.stop()
                raise
            self._fetchers[name] = fetcher
            self._caches[name] = cache

    def stop(self) -> None:
        """Stop every provider slot and close their fetchers."""
        for cache in self._caches.values():
            cache.stop()
        for fetcher in self._fetchers.values():
            _close(fetcher)
        self._caches.clear()
        self._fetchers.clear()

    def cache(self, provider: str = DEFAULT_PROVIDER) -> CredentialCache:
        try:
            return self._caches[provider]
        except KeyError:
            if provider in self._configs:
                raise ProviderUnavailableError(
                    provider, f"Provider {provider} is not started"
                ) from None
            raise ProviderNotFoundError(provider) from None

    def fetcher(self, provider: str = DEFAULT_PROVIDER) -> DocumentFetcher:
        self.cache(provider)
        return self._fetchers[provider]

    def get_discovery_document(self, provider: str = DEFAULT_PROVIDER) -> Mapping[str, Any]:
        return self.cache(provider).get_discovery_document()

    def get_key_set(self, provider: str = DEFAULT_PROVIDER) -> KeySet:
        return self.cache(provider).get_key_set()

    def get_config(self, provider: str = DEFAULT_PROVIDER) -> ProviderConfig:
        return self.cache(provider).get_config()

    def get_snapshot(self, provider: str = DEFAULT_PROVIDER) -> CredentialSnapshot:
        return self.cache(provider).get_snapshot()

    def status(self, provider: str = DEFAULT_PROVIDER) -> ProviderStatus:
        return self.cache(provider).status()


def _close(fetcher: Any) -> None:
    close = getattr(fetcher, "close", None)
    if close is not None:
        close()
