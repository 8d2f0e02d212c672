"""Object and state store used to persist group addresses and their values.

Objects live in a dotted namespace (``ga.Lighting.1_2_3``). Each object is a
dict ``{'type': 'channel'|'state', 'common': {...}, 'native': {...}}``; leaf
states additionally carry a tagged value (``State``).
"""

import copy
import fnmatch
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..exceptions import StoreWriteFailure
from ..models import State

logger = logging.getLogger(__name__)

StateCallback = Callable[[str, Optional[State]], None]


def deep_merge(target: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``patch`` into ``target`` and return ``target``."""
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class ObjectStore(ABC):
    """Repository interface for objects and their states"""

    @abstractmethod
    def set_object_not_exists(self, obj_id: str, obj: Dict[str, Any]) -> bool:
        """Create the object unless it exists. Returns True if created."""

    @abstractmethod
    def extend_object(self, obj_id: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``obj`` into an existing object, creating it if needed."""

    @abstractmethod
    def get_object(self, obj_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def get_object_view(self, prefix: str) -> List[Tuple[str, Dict[str, Any]]]:
        """All objects whose id starts with ``prefix``, ordered by id."""

    @abstractmethod
    def get_state(self, state_id: str) -> Optional[State]:
        pass

    @abstractmethod
    def set_state(self, state_id: str, val: Any, ack: bool = False) -> State:
        pass

    @abstractmethod
    def subscribe_states(self, pattern: str, callback: StateCallback) -> Callable[[], None]:
        """Call ``callback(id, state)`` for state changes matching ``pattern``.

        Returns:
            Function removing the subscription
        """

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Group several changes; stores that persist write them once."""
        yield


class JsonObjectStore(ObjectStore):
    """Object store kept in memory and persisted to a JSON file.

    Without a path nothing is written to disk. Changes made inside ``batch()``
    are written once when the outermost batch ends. With a ``flush_delay``
    (seconds), state value changes are collected and written by a timer;
    object changes are always written at once.
    """

    def __init__(self, path: Optional[str] = None, flush_delay: float = 0.0):
        self.path = path
        self.flush_delay = flush_delay
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.states: Dict[str, State] = {}
        self.lock = threading.RLock()
        self._subscriptions: List[Tuple[str, StateCallback]] = []
        self._batch_depth = 0
        self._dirty = False
        self._timer: Optional[threading.Timer] = None
        if path and os.path.exists(path):
            self._load()

    def _load(self):
        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        self.objects = data.get('objects', {})
        self.states = {
            state_id: State(val=s.get('val'), ack=bool(s.get('ack')), ts=s.get('ts', 0))
            for state_id, s in data.get('states', {}).items()
        }
        logger.info(f"Loaded {len(self.objects)} objects and {len(self.states)} states from {self.path}")

    def _save(self):
        if not self.path:
            return
        with self.lock:
            data = {
                'objects': self.objects,
                'states': {state_id: s.to_dict() for state_id, s in self.states.items()},
            }
            tmp_path = None
            try:
                directory = os.path.dirname(os.path.abspath(self.path))
                os.makedirs(directory, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(
                    dir=directory, prefix=os.path.basename(self.path) + '.', suffix='.tmp')
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, default=str)
                os.replace(tmp_path, self.path)
            except (OSError, TypeError) as exc:
                if tmp_path and os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise StoreWriteFailure(f"Could not write object store {self.path}: {exc}") from exc

    def _changed(self, deferrable: bool = False):
        if not self.path:
            return
        self._dirty = True
        if self._batch_depth:
            return
        if deferrable and self.flush_delay > 0:
            if self._timer is None:
                self._timer = threading.Timer(self.flush_delay, self._flush_from_timer)
                self._timer.daemon = True
                self._timer.start()
            return
        self.flush()

    def _flush_from_timer(self):
        try:
            self.flush()
        except StoreWriteFailure as e:
            logger.error(str(e))

    def flush(self):
        """Write pending changes now."""
        with self.lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._dirty:
                return
            self._save()
            self._dirty = False

    def close(self):
        self.flush()

    @contextmanager
    def batch(self) -> Iterator[None]:
        with self.lock:
            self._batch_depth += 1
            try:
                yield
            finally:
                self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self.flush()

    def set_object_not_exists(self, obj_id: str, obj: Dict[str, Any]) -> bool:
        with self.lock:
            if obj_id in self.objects:
                return False
            self.objects[obj_id] = copy.deepcopy(obj)
            self._changed()
        return True

    def extend_object(self, obj_id: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        with self.lock:
            existing = self.objects.setdefault(obj_id, {})
            deep_merge(existing, obj)
            self._changed()
        return existing

    def get_object(self, obj_id: str) -> Optional[Dict[str, Any]]:
        return self.objects.get(obj_id)

    def get_object_view(self, prefix: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self.lock:
            items = [(obj_id, obj) for obj_id, obj in self.objects.items() if obj_id.startswith(prefix)]
        return sorted(items, key=lambda item: item[0])

    def get_state(self, state_id: str) -> Optional[State]:
        return self.states.get(state_id)

    def set_state(self, state_id: str, val: Any, ack: bool = False) -> State:
        state = State(val=val, ack=ack)
        with self.lock:
            self.states[state_id] = state
            self._changed(deferrable=True)
        # subscribers run outside the lock
        self._notify(state_id, state)
        return state

    def subscribe_states(self, pattern: str, callback: StateCallback) -> Callable[[], None]:
        entry = (pattern, callback)
        with self.lock:
            self._subscriptions.append(entry)

        def unsubscribe():
            with self.lock:
                if entry in self._subscriptions:
                    self._subscriptions.remove(entry)
        return unsubscribe

    def _notify(self, state_id: str, state: State):
        with self.lock:
            subscriptions = list(self._subscriptions)
        for pattern, callback in subscriptions:
            if not fnmatch.fnmatchcase(state_id, pattern):
                continue
            try:
                callback(state_id, state)
            except Exception as e:
                logger.error(f"State subscriber for {pattern} failed on {state_id}: {e}")
