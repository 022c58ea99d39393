"""
EventBus — Médiateur publish/subscribe in-process.

Responsabilités :
  1. Enregistrer les listeners par kind, avec priorité
  2. Dispatcher synchroniquement (publish) ou séquentiellement en
     attendant chaque listener (publish_async)
  3. Isoler les listeners : une exception est loggée, jamais propagée
  4. Garder un historique borné (ring buffer) pour le diagnostic

Design decisions :
  - Dispatch depth-first : un listener peut republier, le publish
    imbriqué termine avant que le listener externe continue
  - Profondeur bornée (max_dispatch_depth) via un ContextVar, valable
    aussi bien en sync qu'en asyncio (une profondeur par task)
  - Les listeners `once` sont retirés APRÈS le dispatch complet,
    on itère toujours sur un snapshot
  - Mutations du registre sous RLock : sûr si l'hôte est multi-threadé
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import threading
from collections import deque
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Callable, Optional

from models.events import Event, KindLike, ListenerRegistration, kind_key

logger = logging.getLogger("finpulse.orchestrator.bus")

_dispatch_depth: ContextVar[int] = ContextVar("finpulse_dispatch_depth", default=0)


class EventBus:
    """
    Bus d'événements du core.

    Usage :
        bus = EventBus(history_size=100)
        listener_id = bus.subscribe(EventKind.AGENT_ALERT, on_alert, priority=10)
        bus.publish(EventKind.EXPENSE_ADDED, {"userId": "u1", ...})
        results = await bus.publish_async(EventKind.INCOME_ADDED, {...})
        bus.unsubscribe(EventKind.AGENT_ALERT, listener_id)
    """

    def __init__(
        self,
        history_size: int = 100,
        max_dispatch_depth: int = 16,
    ) -> None:
        if history_size < 1:
            raise ValueError("history_size must be >= 1")
        if max_dispatch_depth < 1:
            raise ValueError("max_dispatch_depth must be >= 1")

        self.history_size = history_size
        self.max_dispatch_depth = max_dispatch_depth

        self._listeners: dict[str, list[ListenerRegistration]] = {}
        self._history: deque[Event] = deque(maxlen=history_size)
        self._seq = itertools.count()
        self._lock = threading.RLock()
        self._claimed: set[str] = set()
        self._dropped: int = 0

    # ──────────────────────────────────────────────────────
    # SUBSCRIBE
    # ──────────────────────────────────────────────────────

    def subscribe(
        self,
        kind: KindLike,
        callback: Callable[[Any], Any],
        priority: int = 0,
        once: bool = False,
    ) -> str:
        """Abonne un callback à un kind. Retourne l'id du listener."""
        key = kind_key(kind)
        with self._lock:
            registration = ListenerRegistration(
                kind=key,
                callback=callback,
                priority=priority,
                once=once,
                seq=next(self._seq),
            )
            listeners = self._listeners.setdefault(key, [])
            listeners.append(registration)
            # Tri stable : à priorité égale, l'ordre d'inscription est conservé
            listeners.sort(key=lambda l: (-l.priority, l.seq))

        logger.debug(
            f"Subscribed {registration.id} (priority={priority}, once={once})"
        )
        return registration.id

    def once(
        self,
        kind: KindLike,
        callback: Callable[[Any], Any],
        priority: int = 0,
    ) -> str:
        """Raccourci : abonnement consommé au premier publish."""
        return self.subscribe(kind, callback, priority=priority, once=True)

    def unsubscribe(self, kind: KindLike, listener_id: str) -> None:
        """Retire un listener. No-op s'il n'existe pas."""
        key = kind_key(kind)
        with self._lock:
            listeners = self._listeners.get(key)
            if not listeners:
                return
            remaining = [l for l in listeners if l.id != listener_id]
            if remaining:
                self._listeners[key] = remaining
            else:
                del self._listeners[key]

    def clear_all(self) -> None:
        """Retire tous les listeners (l'historique est conservé)."""
        with self._lock:
            self._listeners.clear()

    # ──────────────────────────────────────────────────────
    # PUBLISH
    # ──────────────────────────────────────────────────────

    def publish(self, kind: KindLike, payload: Any = None) -> int:
        """Publie un événement et dispatche synchroniquement.

        Returns:
            Nombre de listeners invoqués (0 si abstention pour profondeur).
        """
        key = kind_key(kind)
        depth = _dispatch_depth.get()
        if depth >= self.max_dispatch_depth:
            self._on_depth_exceeded(key, depth)
            return 0

        self._record(key, payload)
        snapshot = self._snapshot(key)
        if not snapshot:
            return 0

        fired: list[str] = []
        invoked = 0
        token = _dispatch_depth.set(depth + 1)
        try:
            for listener in snapshot:
                if listener.once and not self._claim_once(listener.id):
                    continue
                invoked += 1
                try:
                    result = listener.callback(payload)
                    if inspect.isawaitable(result):
                        self._schedule_awaitable(key, listener, result)
                except Exception:
                    logger.exception(
                        f"Error in listener {listener.id} for {key}"
                    )
                finally:
                    if listener.once:
                        fired.append(listener.id)
        finally:
            _dispatch_depth.reset(token)

        self._remove_fired(key, fired)
        return invoked

    async def publish_async(self, kind: KindLike, payload: Any = None) -> list[Any]:
        """Publie et attend chaque listener, dans l'ordre de priorité.

        Ne lève jamais : une erreur de listener devient {"error": exc}.

        Returns:
            Liste des résultats (ou {"error": ...}) par listener.
        """
        key = kind_key(kind)
        depth = _dispatch_depth.get()
        if depth >= self.max_dispatch_depth:
            self._on_depth_exceeded(key, depth)
            return []

        self._record(key, payload)
        snapshot = self._snapshot(key)
        if not snapshot:
            return []

        results: list[Any] = []
        fired: list[str] = []
        token = _dispatch_depth.set(depth + 1)
        try:
            for listener in snapshot:
                if listener.once and not self._claim_once(listener.id):
                    continue
                try:
                    result = listener.callback(payload)
                    if inspect.isawaitable(result):
                        result = await result
                    results.append(result)
                except Exception as e:
                    logger.exception(
                        f"Error in async listener {listener.id} for {key}"
                    )
                    results.append({"error": e})
                finally:
                    if listener.once:
                        fired.append(listener.id)
        finally:
            _dispatch_depth.reset(token)

        self._remove_fired(key, fired)
        return results

    # ──────────────────────────────────────────────────────
    # HISTORY & INTROSPECTION
    # ──────────────────────────────────────────────────────

    def recent_history(self, count: int = 10) -> list[Event]:
        """Les `count` derniers événements, le plus récent en dernier."""
        if count <= 0:
            return []
        with self._lock:
            entries = list(self._history)
        return entries[-count:]

    def listener_count(self, kind: KindLike) -> int:
        with self._lock:
            return len(self._listeners.get(kind_key(kind), []))

    def registered_kinds(self) -> list[str]:
        with self._lock:
            return list(self._listeners.keys())

    @property
    def dropped_count(self) -> int:
        """Publications abandonnées pour profondeur excessive."""
        return self._dropped

    # ──────────────────────────────────────────────────────
    # INTERNAL
    # ──────────────────────────────────────────────────────

    def _record(self, key: str, payload: Any) -> None:
        with self._lock:
            self._history.append(
                Event(kind=key, payload=payload, timestamp=datetime.utcnow())
            )

    def _snapshot(self, key: str) -> list[ListenerRegistration]:
        with self._lock:
            return list(self._listeners.get(key, []))

    def _claim_once(self, listener_id: str) -> bool:
        """Un listener `once` ne tire qu'une fois, même en publish imbriqué."""
        with self._lock:
            if listener_id in self._claimed:
                return False
            self._claimed.add(listener_id)
            return True

    def _remove_fired(self, key: str, fired: list[str]) -> None:
        for listener_id in fired:
            self.unsubscribe(key, listener_id)
        with self._lock:
            self._claimed.difference_update(fired)

    def _on_depth_exceeded(self, key: str, depth: int) -> None:
        with self._lock:
            self._dropped += 1
        logger.error(
            f"Dispatch depth {depth} reached max {self.max_dispatch_depth} "
            f"while publishing {key}. Event dropped (listener feedback loop?)"
        )

    def _schedule_awaitable(
        self,
        key: str,
        listener: ListenerRegistration,
        awaitable: Any,
    ) -> None:
        """Un listener async appelé via publish() synchrone.

        publish() ne suspend jamais : on délègue à la boucle en cours
        s'il y en a une, sinon on abandonne proprement.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(
                f"Listener {listener.id} for {key} is async but no event loop "
                f"is running. Use publish_async() for this kind."
            )
            return

        task = asyncio.ensure_future(awaitable)

        def _log_failure(done: asyncio.Future) -> None:
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                logger.error(
                    f"Error in scheduled listener {listener.id} for {key}: {exc!r}"
                )

        task.add_done_callback(_log_failure)

    def __repr__(self) -> str:
        return (
            f"<EventBus kinds={len(self._listeners)} "
            f"history={len(self._history)}/{self.history_size}>"
        )
