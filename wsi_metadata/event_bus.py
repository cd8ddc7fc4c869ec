# Copyright 2023 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
"""Publish/subscribe of named events.

Events are delivered synchronously, in subscription order, on the thread that
calls broadcast. Exceptions raised by a callback propagate to the caller of
broadcast and stop delivery to the remaining subscribers.
"""
import dataclasses
from typing import Any, Callable, Collection, Dict, List
import uuid

from wsi_metadata import wsi_metadata_errors

EventCallback = Callable[[Any], None]


@dataclasses.dataclass(frozen=True)
class _Listener:
  listener_id: str
  callback: EventCallback


class Subscription:
  """Handle returned by EventBus.subscribe."""

  def __init__(self, bus: 'EventBus', event_name: str, listener_id: str):
    self._bus = bus
    self._event_name = event_name
    self._listener_id = listener_id

  @property
  def event_name(self) -> str:
    return self._event_name

  @property
  def listener_id(self) -> str:
    return self._listener_id

  def unsubscribe(self) -> None:
    self._bus.unsubscribe(self._event_name, self._listener_id)


class EventBus:
  """Delivers named events to subscribed callbacks."""

  def __init__(self, event_names: Collection[str]):
    """Constructor.

    Args:
      event_names: Names of events that can be subscribed to.
    """
    self._event_names = frozenset(event_names)
    self._listeners: Dict[str, List[_Listener]] = {}

  @property
  def event_names(self) -> frozenset[str]:
    return self._event_names

  def is_valid_event(self, event_name: str) -> bool:
    return event_name in self._event_names

  def subscribe(
      self, event_name: str, callback: EventCallback
  ) -> Subscription:
    """Subscribes callback to event.

    Args:
      event_name: Name of event to subscribe to.
      callback: Called with the event payload each time the event is
        broadcast.

    Returns:
      Subscription that can be used to unsubscribe.

    Raises:
      UnsupportedEventError: event_name is not a declared event.
    """
    if not self.is_valid_event(event_name):
      raise wsi_metadata_errors.UnsupportedEventError(
          f'Event {event_name} not supported.'
      )
    listener_id = str(uuid.uuid4())
    self._listeners.setdefault(event_name, []).append(
        _Listener(listener_id, callback)
    )
    return Subscription(self, event_name, listener_id)

  def unsubscribe(self, event_name: str, listener_id: str) -> None:
    """Removes listener; no-op if listener is not subscribed."""
    listeners = self._listeners.get(event_name)
    if not listeners:
      return
    self._listeners[event_name] = [
        listener for listener in listeners if listener.listener_id != listener_id
    ]

  def unsubscribe_all(self) -> None:
    self._listeners.clear()

  def listener_count(self, event_name: str) -> int:
    return len(self._listeners.get(event_name, []))

  def broadcast(self, event_name: str, payload: Any) -> None:
    """Calls every callback subscribed to event_name with payload."""
    # Copy so callbacks can unsubscribe while the event is being delivered.
    for listener in list(self._listeners.get(event_name, [])):
      listener.callback(payload)
