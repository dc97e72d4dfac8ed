"""
Row-change notifications.

Writes in ``models`` publish a ``ChangeEvent`` to the in-process notifier after
commit and send the same payload through ``pg_notify`` inside the
transaction. ``PgChangeListener`` relays notifications raised by other
processes into the local notifier, skipping the ones this process sent.
Subscribers re-fetch what they display; events only say which row changed.
"""
import json
import logging
import queue
import select
import threading
from collections import namedtuple
from enum import Enum
from uuid import uuid4

import psycopg2
import psycopg2.extensions

logger = logging.getLogger(__name__)

PROCESS_ORIGIN = uuid4().hex


class ChangeTable(str, Enum):
    PROFILES = 'profiles'
    COMPLAINTS = 'complaints'
    DOCUMENT_REQUESTS = 'document_requests'
    ANNOUNCEMENTS = 'announcements'
    STAFF = 'staff'


class ChangeKind(str, Enum):
    INSERT = 'INSERT'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'


# Tables feeding the dashboard figures.
AGGREGATED_TABLES = frozenset({ChangeTable.PROFILES, ChangeTable.COMPLAINTS, ChangeTable.DOCUMENT_REQUESTS})


class ChangeEvent(namedtuple('ChangeEvent', 'table kind row_id owner_id origin')):
    __slots__ = ()

    @classmethod
    def create(cls, table, kind, row_id, owner_id=None):
        return cls(ChangeTable(table), ChangeKind(kind), str(row_id), str(owner_id) if owner_id else None, PROCESS_ORIGIN)

    @classmethod
    def from_payload(cls, payload):
        """Parse a notification payload; raises ValueError on anything unexpected."""
        if isinstance(payload, (bytes, str)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise ValueError(f'Change payload is not JSON: {e}') from e
        if not isinstance(payload, dict):
            raise ValueError('Change payload must be an object.')

        missing = [key for key in ('table', 'kind', 'row_id') if not payload.get(key)]
        if missing:
            raise ValueError(f"Change payload missing: {', '.join(missing)}")
        table = ChangeTable(payload['table'])
        kind = ChangeKind(str(payload['kind']).upper())
        owner_id = payload.get('owner_id')
        return cls(table, kind, str(payload['row_id']), str(owner_id) if owner_id else None, payload.get('origin'))

    def to_dict(self):
        return {
            'table': self.table.value,
            'kind': self.kind.value,
            'row_id': self.row_id,
            'owner_id': self.owner_id,
        }

    def to_json(self):
        payload = self.to_dict()
        payload['origin'] = self.origin
        return json.dumps(payload)

    @property
    def affects_dashboard(self):
        return self.table in AGGREGATED_TABLES


class ChangeNotifier:
    """Fan-out of change events to callbacks registered per table."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = {}

    def subscribe(self, table, callback):
        """Register ``callback`` for ``table`` (None = every table). Returns an unsubscribe function."""
        key = ChangeTable(table) if table is not None else None
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def subscriber_count(self, table=None):
        key = ChangeTable(table) if table is not None else None
        with self._lock:
            return len(self._subscribers.get(key, []))

    def publish(self, event):
        if event is None:
            return 0
        with self._lock:
            callbacks = list(self._subscribers.get(event.table, [])) + list(self._subscribers.get(None, []))
        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception:
                # Subscriber failures never reach the writer.
                logger.exception("Change subscriber failed for %s %s", event.table.value, event.row_id)
        return delivered


notifier = ChangeNotifier()


def pg_notify(cur, channel, event):
    cur.execute("SELECT pg_notify(%s, %s)", (channel, event.to_json()))


class Subscription:
    """Queue-backed subscription used by the event-stream endpoint."""

    def __init__(self, change_notifier, tables=None, maxsize=256):
        self._notifier = change_notifier
        self._queue = queue.Queue(maxsize=maxsize)
        self._unsubscribers = []
        for table in (tables or [None]):
            self._unsubscribers.append(change_notifier.subscribe(table, self._push))

    def _push(self, event):
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("Dropping change event for slow subscriber: %s %s", event.table.value, event.row_id)

    def get(self, timeout=None):
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def format_sse(event_name, data):
    body = json.dumps(data, default=str)
    return f"event: {event_name}\ndata: {body}\n\n"


class PgChangeListener(threading.Thread):
    """LISTEN on the change channel and republish events from other processes."""

    def __init__(self, connect_kwargs, channel, change_notifier=None, poll_seconds=5.0):
        super().__init__(name='pg-change-listener', daemon=True)
        self.connect_kwargs = dict(connect_kwargs)
        self.channel = channel
        self.change_notifier = change_notifier or notifier
        self.poll_seconds = poll_seconds
        self._stop_event = threading.Event()

    def stop(self):
        self._stop_event.set()

    def handle_payload(self, payload):
        try:
            event = ChangeEvent.from_payload(payload)
        except ValueError as e:
            logger.warning("Dropping malformed change notification: %s", e)
            return None
        if event.origin == PROCESS_ORIGIN:
            return None
        self.change_notifier.publish(event)
        return event

    def _listen(self):
        conn = psycopg2.connect(**self.connect_kwargs)
        conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
        try:
            cur = conn.cursor()
            cur.execute(f'LISTEN "{self.channel}"')
            logger.info("Listening for changes on channel %s", self.channel)
            while not self._stop_event.is_set():
                if select.select([conn], [], [], self.poll_seconds) == ([], [], []):
                    continue
                conn.poll()
                while conn.notifies:
                    notify = conn.notifies.pop(0)
                    self.handle_payload(notify.payload)
        finally:
            conn.close()

    def run(self):
        while not self._stop_event.is_set():
            try:
                self._listen()
            except (psycopg2.OperationalError, psycopg2.InterfaceError):
                logger.exception("Change listener lost its connection; reconnecting")
                self._stop_event.wait(self.poll_seconds)
            except Exception:
                logger.exception("Change listener failed; restarting")
                self._stop_event.wait(self.poll_seconds)
