"""Hook registry: loads lifecycle hooks and dispatches events to them.

Hooks are :class:`Hook` subclasses named in configuration.  Dispatch
is fire-and-forget on a :class:`~concurrent.futures.ThreadPoolExecutor`
so a slow or failing hook never stalls an issuance run; each hook gets
its own copy of the event context.

Usage::

    from acmeflow.hooks.registry import HookRegistry

    registry = HookRegistry(settings.hooks)
    registry.dispatch("certificate.issuance", {"certificate": "www"})
    registry.shutdown()
"""

from __future__ import annotations

import copy
import importlib
import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from acmeflow.hooks.base import Hook
from acmeflow.hooks.events import EVENT_METHOD_MAP, KNOWN_EVENTS

if TYPE_CHECKING:
    from acmeflow.config.settings import HookEntrySettings, HookSettings

log = logging.getLogger(__name__)

_CLASS_PATH_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$")
_RETRY_BASE_DELAY = 0.5


@dataclass(frozen=True)
class _LoadedHook:
    instance: Hook
    entry: HookEntrySettings
    events: frozenset[str]

    @property
    def name(self) -> str:
        return self.entry.class_path


def load_hook_class(class_path: str) -> type[Hook]:
    """Import *class_path* and check that it names a :class:`Hook` subclass.

    Raises
    ------
    ValueError
        If *class_path* is not a dotted ``package.module.ClassName``.
    TypeError
        If the imported object is not a :class:`Hook` subclass.

    """
    if not _CLASS_PATH_RE.match(class_path):
        msg = (
            f"Invalid hook class path '{class_path}': must match "
            "'package.module.ClassName' (only alphanumerics and underscores)"
        )
        raise ValueError(msg)

    module_path, _, cls_name = class_path.rpartition(".")
    cls = getattr(importlib.import_module(module_path), cls_name)
    if not (isinstance(cls, type) and issubclass(cls, Hook)):
        msg = f"Hook '{class_path}' must be a subclass of acmeflow.hooks.Hook"
        raise TypeError(msg)
    return cls


class HookRegistry:
    """Registry of loaded hooks with fire-and-forget dispatch.

    Parameters
    ----------
    settings:
        The ``hooks`` section from :class:`AcmeflowSettings`.

    """

    def __init__(self, settings: HookSettings) -> None:
        self._settings = settings
        self._hooks: list[_LoadedHook] = []
        self._executor: ThreadPoolExecutor | None = None
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._dispatched = 0
        self._errors = 0
        self._load()

    @property
    def hooks(self) -> list[Hook]:
        return [loaded.instance for loaded in self._hooks]

    @property
    def dispatch_count(self) -> int:
        """Hook invocations finished so far (success or error)."""
        with self._lock:
            return self._dispatched

    @property
    def error_count(self) -> int:
        """Hook invocations that ended in an exception."""
        with self._lock:
            return self._errors

    # -- loading -----------------------------------------------------------

    def _load(self) -> None:
        """Instantiate every enabled hook; a failure aborts the CLI run before issuance."""
        for entry in self._settings.registered:
            if not entry.enabled:
                log.debug("Hook '%s' is disabled, skipping", entry.class_path)
                continue
            try:
                self._hooks.append(self._load_entry(entry))
            except Exception:
                log.critical(
                    "Failed to load hook '%s'",
                    entry.class_path,
                    exc_info=True,
                )
                raise

        if self._hooks:
            self._executor = ThreadPoolExecutor(
                max_workers=self._settings.max_workers,
                thread_name_prefix="acmeflow-hook",
            )
            log.info("Loaded %d hook(s)", len(self._hooks))

    @staticmethod
    def _load_entry(entry: HookEntrySettings) -> _LoadedHook:
        cls = load_hook_class(entry.class_path)
        cls.validate_config(entry.config)

        unknown = frozenset(entry.events) - KNOWN_EVENTS
        if unknown:
            msg = (
                f"Hook '{entry.class_path}' subscribes to unknown events: "
                f"{sorted(unknown)}. Known events: {sorted(KNOWN_EVENTS)}"
            )
            raise ValueError(msg)

        events = frozenset(entry.events) or KNOWN_EVENTS
        log.info(
            "Loaded hook: %s (events=%s)",
            entry.class_path,
            "all" if events == KNOWN_EVENTS else sorted(events),
        )
        return _LoadedHook(instance=cls(config=entry.config), entry=entry, events=events)

    # -- dispatch ----------------------------------------------------------

    def dispatch(self, event: str, context: dict[str, Any]) -> None:
        """Send *event* to every subscribed hook without waiting.

        Raises
        ------
        ValueError
            If *event* is not a known event name.

        """
        method_name = EVENT_METHOD_MAP.get(event)
        if method_name is None:
            msg = f"Unknown hook event '{event}'. Known events: {sorted(KNOWN_EVENTS)}"
            raise ValueError(msg)

        if self._closed.is_set() or self._executor is None:
            return

        snapshot = copy.deepcopy(context)
        for loaded in self._hooks:
            if event not in loaded.events:
                continue
            timeout = loaded.entry.timeout_seconds or self._settings.timeout_seconds
            try:
                future = self._executor.submit(
                    self._invoke, loaded, method_name, snapshot.copy()
                )
            except RuntimeError:
                log.warning("Executor shut down, dropping '%s' for '%s'", event, loaded.name)
                continue
            future.add_done_callback(
                lambda f, _l=loaded, _e=event, _t=timeout: self._on_done(f, _l, _e, _t),
            )

    def _invoke(self, loaded: _LoadedHook, method_name: str, context: dict) -> float:
        """Call the hook method, retrying with backoff; return elapsed ms."""
        start = time.monotonic()
        attempts = self._settings.max_retries + 1
        for attempt in range(attempts):
            try:
                getattr(loaded.instance, method_name)(context)
                break
            except Exception:
                if attempt + 1 >= attempts:
                    raise
                time.sleep(_RETRY_BASE_DELAY * (2**attempt))
        return (time.monotonic() - start) * 1000

    def _on_done(self, future: Future, loaded: _LoadedHook, event: str, timeout: int) -> None:
        extra = {"hook_name": loaded.name, "event": event}
        exc = future.exception()
        with self._lock:
            self._dispatched += 1
            if exc is not None:
                self._errors += 1

        if exc is not None:
            log.error(
                "Hook '%s' failed for event '%s': %s",
                loaded.name,
                event,
                exc,
                extra=extra,
            )
            return

        elapsed_ms = future.result()
        extra["duration_ms"] = round(elapsed_ms, 2)
        if elapsed_ms > timeout * 1000:
            log.warning(
                "Hook '%s' exceeded its %ds budget for event '%s' (%.1fms)",
                loaded.name,
                timeout,
                event,
                elapsed_ms,
                extra=extra,
            )
        else:
            log.debug(
                "Hook '%s' handled '%s' in %.1fms",
                loaded.name,
                event,
                elapsed_ms,
                extra=extra,
            )

    # -- lifecycle ---------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:  # noqa: FBT001, FBT002
        """Stop accepting events and drain the executor (idempotent)."""
        if self._closed.is_set():
            return
        self._closed.set()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            log.debug(
                "Hook executor shut down (dispatched=%d, errors=%d)",
                self.dispatch_count,
                self.error_count,
            )
