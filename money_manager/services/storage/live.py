"""
Change Notification and Live Queries

The store publishes one notification per touched collection after each
committed write. Subscribers re-run their query on notification, so UI
collaborators see the live current array without polling.

Notifications raised inside a transaction are held back until commit
and coalesced; a rolled-back transaction publishes nothing.
"""

from typing import Callable, Iterable

import structlog

from money_manager.models.records import Collection, Record


ChangeListener = Callable[[Collection], None]
RowsListener = Callable[[list[Record]], None]


class Subscription:
    """Handle returned by ChangeNotifier.subscribe()."""

    def __init__(self, notifier: "ChangeNotifier", collection: Collection, listener: ChangeListener):
        self._notifier = notifier
        self.collection = collection
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._notifier._remove(self)
            self.active = False


class ChangeNotifier:
    """Per-collection publish/subscribe hub."""

    def __init__(self):
        self._subscriptions: dict[Collection, list[Subscription]] = {
            collection: [] for collection in Collection
        }
        self._logger = structlog.get_logger(__name__)

    def subscribe(self, collection: Collection, listener: ChangeListener) -> Subscription:
        subscription = Subscription(self, collection, listener)
        self._subscriptions[collection].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions[subscription.collection]
        if subscription in subscribers:
            subscribers.remove(subscription)

    def publish(self, collections: Iterable[Collection]) -> None:
        """
        Notify subscribers of each collection once.

        A failing listener is logged and skipped; it never undoes the
        write that triggered it or starves the other listeners.
        """
        touched = set(collections)
        for collection in Collection:
            if collection not in touched:
                continue
            for subscription in list(self._subscriptions[collection]):
                try:
                    subscription.listener(collection)
                except Exception as e:
                    self._logger.error(
                        "change_listener_failed",
                        collection=collection.value,
                        error=str(e),
                        exc_info=True,
                    )


class LiveQuery:
    """
    The live result of one query over one collection.

    `current` always reflects the last committed state the query has seen.
    """

    def __init__(
        self,
        collection: Collection,
        run_query: Callable[[], list[Record]],
        notifier: ChangeNotifier,
    ):
        self.collection = collection
        self._run_query = run_query
        self._listeners: list[RowsListener] = []
        self._current = run_query()
        self.refresh_count = 0
        self._subscription = notifier.subscribe(collection, self._on_change)

    @property
    def current(self) -> list[Record]:
        return list(self._current)

    @property
    def closed(self) -> bool:
        return not self._subscription.active

    def subscribe(self, listener: RowsListener) -> Callable[[], None]:
        """
        Call `listener` with the fresh rows after each refresh.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _on_change(self, collection: Collection) -> None:
        self._current = self._run_query()
        self.refresh_count += 1
        for listener in list(self._listeners):
            listener(self.current)

    def close(self) -> None:
        self._subscription.unsubscribe()
        self._listeners.clear()
