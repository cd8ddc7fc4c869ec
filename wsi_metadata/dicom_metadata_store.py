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
"""In-memory Study -> Series -> Instance index of DICOM metadata.

A DicomMetadataStore is constructed explicitly and passed to whatever needs
it; there is no process wide store. The store is not thread safe, a single
caller is assumed to mutate it at a time.

Subscribers are notified synchronously of changes:

  store = dicom_metadata_store.DicomMetadataStore()
  subscription = store.subscribe(
      dicom_metadata_store.INSTANCES_ADDED, on_instances_added
  )
  store.add_instances(instances)  # on_instances_added called before return.
  subscription.unsubscribe()
"""
from __future__ import annotations

import collections
import dataclasses
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from wsi_metadata import dicom_naturalizer
from wsi_metadata import event_bus
from wsi_metadata import metadata_model
from wsi_metadata import wsi_metadata_errors
from wsi_metadata import wsi_metadata_logging_factory

STUDY_ADDED = 'event::dicomMetadataStore:studyAdded'
INSTANCES_ADDED = 'event::dicomMetadataStore:instancesAdded'
SERIES_ADDED = 'event::dicomMetadataStore:seriesAdded'
SERIES_UPDATED = 'event::dicomMetadataStore:seriesUpdated'

EVENTS = (STUDY_ADDED, INSTANCES_ADDED, SERIES_ADDED, SERIES_UPDATED)

InstanceRecord = Union[metadata_model.Instance, dicom_naturalizer.RawDicomRecord]


@dataclasses.dataclass(frozen=True)
class StudyAddedEvent:
  study_instance_uid: str


@dataclasses.dataclass(frozen=True)
class InstancesAddedEvent:
  study_instance_uid: str
  series_instance_uid: str
  made_in_client: bool


@dataclasses.dataclass(frozen=True)
class SeriesAddedEvent:
  study_instance_uid: str
  series_summary_metadata: Tuple[Mapping[str, Any], ...]
  made_in_client: bool


@dataclasses.dataclass(frozen=True)
class SeriesUpdatedEvent:
  study_instance_uid: str
  series_instance_uid: str


def _to_instance(record: InstanceRecord) -> metadata_model.Instance:
  if isinstance(record, metadata_model.Instance):
    return record
  return metadata_model.Instance.from_dataset(
      dicom_naturalizer.naturalize(record)
  )


def _modalities(value: Any) -> List[str]:
  if not value:
    return []
  if isinstance(value, str):
    return value.split('\\')
  return list(value)


class DicomMetadataStore:
  """Hierarchical index of study, series and instance metadata."""

  def __init__(
      self,
      bus: Optional[event_bus.EventBus] = None,
      logging_factory: Optional[
          wsi_metadata_logging_factory.AbstractLoggingInterfaceFactory
      ] = None,
  ):
    """Constructor.

    Args:
      bus: Event bus used to notify subscribers; a bus declaring EVENTS is
        created if undefined.
      logging_factory: Factory used to create the store's logger.
    """
    self._bus = event_bus.EventBus(EVENTS) if bus is None else bus
    self._logger = wsi_metadata_logging_factory.create_logger(logging_factory)
    self._studies: List[metadata_model.Study] = []

  @property
  def event_bus(self) -> event_bus.EventBus:
    return self._bus

  def subscribe(
      self, event_name: str, callback: event_bus.EventCallback
  ) -> event_bus.Subscription:
    """Subscribes callback to one of EVENTS.

    Raises:
      UnsupportedEventError: event_name is not a store event.
    """
    return self._bus.subscribe(event_name, callback)

  def unsubscribe(self, event_name: str, listener_id: str) -> None:
    self._bus.unsubscribe(event_name, listener_id)

  def _get_or_create_study(
      self, study_instance_uid: str
  ) -> Tuple[metadata_model.Study, bool]:
    study = self.get_study(study_instance_uid)
    if study is not None:
      return study, False
    study = metadata_model.Study(study_instance_uid)
    self._studies.append(study)
    self._logger.debug(
        'Created study.', {metadata_model.STUDY_INSTANCE_UID: study_instance_uid}
    )
    return study, True

  def add_instance(self, record: InstanceRecord) -> metadata_model.Instance:
    """Adds one instance to its study and series without notifying.

    Args:
      record: DICOM P10 bytes, pydicom Dataset, DICOM JSON, naturalized
        dataset, or Instance.

    Returns:
      Instance held by the store; the previously added instance if the
      SOPInstanceUID was already present.

    Raises:
      DicomInstanceDecodeError: Record cannot be decoded.
      MissingDicomUidError: Record does not define study, series, and SOP
        instance UIDs.
    """
    instance = _to_instance(record)
    study, _ = self._get_or_create_study(instance.study_instance_uid)
    study.add_instances_to_series([instance])
    return study.get_series(instance.series_instance_uid).get_instance(
        instance.sop_instance_uid
    )

  def add_instances(
      self, records: Iterable[InstanceRecord], made_in_client: bool = False
  ) -> None:
    """Adds a batch of instances and broadcasts INSTANCES_ADDED.

    The event is broadcast even if every instance was already present so
    subscribers learn a series finished loading. The event identifies the
    study and series of the first instance; a batch is expected to hold the
    instances of one series.

    Args:
      records: Instances to add. An empty batch is ignored.
      made_in_client: Passed through to subscribers.

    Raises:
      DicomInstanceDecodeError: Record cannot be decoded.
      MissingDicomUidError: Record does not define study, series, and SOP
        instance UIDs.
    """
    instances = [_to_instance(record) for record in records]
    if not instances:
      return
    instances_by_study = collections.OrderedDict()
    for instance in instances:
      instances_by_study.setdefault(instance.study_instance_uid, []).append(
          instance
      )
    for study_instance_uid, study_instances in instances_by_study.items():
      study, _ = self._get_or_create_study(study_instance_uid)
      study.add_instances_to_series(study_instances)
    first = instances[0]
    self._bus.broadcast(
        INSTANCES_ADDED,
        InstancesAddedEvent(
            study_instance_uid=first.study_instance_uid,
            series_instance_uid=first.series_instance_uid,
            made_in_client=made_in_client,
        ),
    )

  def add_series_metadata(
      self,
      series_summary_metadata: Optional[
          Sequence[dicom_naturalizer.RawDicomRecord]
      ],
      made_in_client: bool = False,
  ) -> None:
    """Adds series summaries of one study and broadcasts SERIES_ADDED.

    Args:
      series_summary_metadata: Series level records, e.g. QIDO-RS series
        search results. No-op if empty or undefined.
      made_in_client: Passed through to subscribers.

    Raises:
      DicomInstanceDecodeError: Summary cannot be decoded.
      MissingDicomUidError: Summary does not define StudyInstanceUID or
        SeriesInstanceUID.
    """
    if not series_summary_metadata or series_summary_metadata[0] is None:
      return
    summaries = [
        dicom_naturalizer.naturalize(summary)
        for summary in series_summary_metadata
    ]
    study_instance_uid = summaries[0].get(metadata_model.STUDY_INSTANCE_UID)
    if not study_instance_uid:
      raise wsi_metadata_errors.MissingDicomUidError(
          'Series summary metadata is missing StudyInstanceUID.'
      )
    for summary in summaries:
      if not summary.get(metadata_model.SERIES_INSTANCE_UID):
        raise wsi_metadata_errors.MissingDicomUidError(
            'Series summary metadata is missing SeriesInstanceUID.'
        )
    study, _ = self._get_or_create_study(study_instance_uid)
    if not study.study_description:
      study.study_description = summaries[0].get('StudyDescription') or ''
    for summary in summaries:
      study.add_modality(summary.get('Modality'))
    study.number_of_study_related_series = len(summaries)
    for summary in summaries:
      study.set_series_metadata(
          summary[metadata_model.SERIES_INSTANCE_UID], summary
      )
    self._bus.broadcast(
        SERIES_ADDED,
        SeriesAddedEvent(
            study_instance_uid=study_instance_uid,
            series_summary_metadata=tuple(summaries),
            made_in_client=made_in_client,
        ),
    )

  def update_series_metadata(self, series_metadata: Mapping[str, Any]) -> None:
    """Merges metadata onto an existing series; no-op if series is unknown.

    Args:
      series_metadata: Series attributes, must define StudyInstanceUID and
        SeriesInstanceUID of the series to update.
    """
    study_instance_uid = series_metadata.get(metadata_model.STUDY_INSTANCE_UID)
    series_instance_uid = series_metadata.get(
        metadata_model.SERIES_INSTANCE_UID
    )
    if self.get_series(study_instance_uid, series_instance_uid) is None:
      return
    self.set_series_metadata(
        study_instance_uid, series_instance_uid, series_metadata
    )
    self._bus.broadcast(
        SERIES_UPDATED,
        SeriesUpdatedEvent(study_instance_uid, series_instance_uid),
    )

  def set_series_metadata(
      self,
      study_instance_uid: str,
      series_instance_uid: str,
      metadata: Mapping[str, Any],
  ) -> metadata_model.Series:
    """Merges metadata onto series, creating study and series if undefined."""
    study, _ = self._get_or_create_study(study_instance_uid)
    return study.set_series_metadata(series_instance_uid, metadata)

  def add_study(self, study_summary: Mapping[str, Any]) -> None:
    """Adds study if not already present; existing studies are unchanged.

    Raises:
      MissingDicomUidError: Summary does not define StudyInstanceUID.
    """
    study_instance_uid = study_summary.get(metadata_model.STUDY_INSTANCE_UID)
    if not study_instance_uid:
      raise wsi_metadata_errors.MissingDicomUidError(
          'Study summary is missing StudyInstanceUID.'
      )
    study, created = self._get_or_create_study(study_instance_uid)
    if not created:
      return
    for keyword in (
        'PatientID',
        'PatientName',
        'StudyDate',
        'StudyDescription',
        'AccessionNumber',
        'NumInstances',
    ):
      value = study_summary.get(keyword)
      if value is not None:
        study.set(keyword, value)
    for modality in _modalities(study_summary.get('ModalitiesInStudy')):
      study.add_modality(modality)
    self._bus.broadcast(STUDY_ADDED, StudyAddedEvent(study_instance_uid))

  def get_study_instance_uids(self) -> List[str]:
    return [study.study_instance_uid for study in self._studies]

  def get_study(self, study_instance_uid: str) -> Optional[metadata_model.Study]:
    for study in self._studies:
      if study.study_instance_uid == study_instance_uid:
        return study
    return None

  def get_series(
      self, study_instance_uid: str, series_instance_uid: str
  ) -> Optional[metadata_model.Series]:
    study = self.get_study(study_instance_uid)
    if study is None:
      return None
    return study.get_series(series_instance_uid)

  def get_instance(
      self,
      study_instance_uid: str,
      series_instance_uid: str,
      sop_instance_uid: str,
  ) -> Optional[metadata_model.Instance]:
    series = self.get_series(study_instance_uid, series_instance_uid)
    if series is None:
      return None
    return series.get_instance(sop_instance_uid)

  def get_instance_by_image_id(
      self, image_id: str
  ) -> Optional[metadata_model.Instance]:
    for study in self._studies:
      for series in study.series:
        for instance in series.instances:
          if instance.image_id == image_id:
            return instance
    return None

  def update_metadata_for_series(
      self,
      study_instance_uid: str,
      series_instance_uid: str,
      metadata: Mapping[str, Any],
  ) -> None:
    """Merges metadata onto every instance of a series.

    The series record itself is not changed. No-op if the study or series is
    unknown.
    """
    series = self.get_series(study_instance_uid, series_instance_uid)
    if series is None:
      return
    for instance in series.instances:
      instance.update(metadata)
