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
"""Study, series and instance metadata records.

Each record has a fixed core schema, stored as python attributes, and an
extensions dict that holds every other DICOM attribute. Both are addressed by
DICOM keyword:

  instance.get('SOPInstanceUID')      # core attribute
  instance.get('FrameOfReferenceUID')  # extension attribute

Attributes are never dropped; record.to_dataset() returns the flat keyword
keyed dict.
"""
from __future__ import annotations

import collections
import dataclasses
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
)

from wsi_metadata import wsi_metadata_errors

SOP_INSTANCE_UID = 'SOPInstanceUID'
SERIES_INSTANCE_UID = 'SeriesInstanceUID'
STUDY_INSTANCE_UID = 'StudyInstanceUID'

VOLUME = 'VOLUME'
THUMBNAIL = 'THUMBNAIL'
LABEL = 'LABEL'
OVERVIEW = 'OVERVIEW'

_MONOCHROME2 = 'MONOCHROME2'

# Series summary attributes seeded from the first instance of a new series.
_SERIES_SUMMARY_KEYWORDS = (
    'Modality',
    'SeriesNumber',
    'SeriesDate',
    'SeriesTime',
    'SeriesDescription',
)


def merge_attribute(existing: Any, incoming: Any) -> Any:
  """Returns value of attribute after merging incoming onto existing.

  Mapping values are shallow merged into a new dict; all other values are
  overwritten.

  Args:
    existing: Current value of attribute, None if undefined.
    incoming: Value being applied.
  """
  if not isinstance(incoming, Mapping):
    return incoming
  merged = dict(existing) if isinstance(existing, Mapping) else {}
  merged.update(incoming)
  return merged


def _required_uid(dataset: Mapping[str, Any], keyword: str) -> str:
  value = dataset.get(keyword)
  if not value:
    raise wsi_metadata_errors.MissingDicomUidError(
        f'DICOM metadata is missing {keyword}.'
    )
  return str(value)


class _MetadataRecord:
  """Keyword access to core attributes and extensions."""

  # Maps DICOM keyword to python attribute name.
  _KEYWORD_ATTRIBUTES: ClassVar[Mapping[str, str]] = {}
  # Keywords that identify the record; fixed once the record is created.
  _IDENTITY_KEYWORDS: ClassVar[FrozenSet[str]] = frozenset()
  extensions: Dict[str, Any]

  def __contains__(self, keyword: str) -> bool:
    if keyword in self._KEYWORD_ATTRIBUTES:
      return getattr(self, self._KEYWORD_ATTRIBUTES[keyword]) is not None
    return keyword in self.extensions

  def __getitem__(self, keyword: str) -> Any:
    if keyword not in self:
      raise KeyError(keyword)
    return self.get(keyword)

  def get(self, keyword: str, default: Any = None) -> Any:
    attribute = self._KEYWORD_ATTRIBUTES.get(keyword)
    if attribute is not None:
      value = getattr(self, attribute)
      return default if value is None else value
    return self.extensions.get(keyword, default)

  def set(self, keyword: str, value: Any) -> None:
    attribute = self._KEYWORD_ATTRIBUTES.get(keyword)
    if attribute is not None:
      setattr(self, attribute, value)
    else:
      self.extensions[keyword] = value

  def update(self, metadata: Mapping[str, Any]) -> None:
    """Merges keyword keyed metadata onto the record.

    Identity keywords, e.g. SOPInstanceUID of an instance, are not changed.
    """
    for keyword, value in metadata.items():
      if keyword in self._IDENTITY_KEYWORDS:
        continue
      self.set(keyword, merge_attribute(self.get(keyword), value))

  def to_dataset(self) -> Dict[str, Any]:
    """Returns record as flat keyword keyed dict."""
    dataset = {}
    for keyword, attribute in self._KEYWORD_ATTRIBUTES.items():
      value = getattr(self, attribute)
      if value is not None:
        dataset[keyword] = value
    dataset.update(self.extensions)
    return dataset


@dataclasses.dataclass
class Instance(_MetadataRecord):
  """Metadata of one DICOM instance."""

  _IDENTITY_KEYWORDS: ClassVar[FrozenSet[str]] = frozenset(
      [SOP_INSTANCE_UID, SERIES_INSTANCE_UID, STUDY_INSTANCE_UID]
  )
  _KEYWORD_ATTRIBUTES: ClassVar[Mapping[str, str]] = {
      SOP_INSTANCE_UID: 'sop_instance_uid',
      SERIES_INSTANCE_UID: 'series_instance_uid',
      STUDY_INSTANCE_UID: 'study_instance_uid',
      'SOPClassUID': 'sop_class_uid',
      'Modality': 'modality',
      'Rows': 'rows',
      'Columns': 'columns',
      'InstanceNumber': 'instance_number',
      'imageId': 'image_id',
  }

  sop_instance_uid: str
  series_instance_uid: str
  study_instance_uid: str
  sop_class_uid: Optional[str] = None
  modality: Optional[str] = None
  rows: Optional[int] = None
  columns: Optional[int] = None
  instance_number: Optional[int] = None
  image_id: Optional[str] = None
  extensions: Dict[str, Any] = dataclasses.field(default_factory=dict)

  @classmethod
  def from_dataset(cls, dataset: Mapping[str, Any]) -> Instance:
    """Creates instance from naturalized dataset.

    Args:
      dataset: Naturalized (keyword keyed) DICOM dataset.

    Returns:
      Instance holding every attribute of the dataset.

    Raises:
      MissingDicomUidError: Dataset does not define study, series, and SOP
        instance UIDs.
    """
    instance = Instance(
        sop_instance_uid=_required_uid(dataset, SOP_INSTANCE_UID),
        series_instance_uid=_required_uid(dataset, SERIES_INSTANCE_UID),
        study_instance_uid=_required_uid(dataset, STUDY_INSTANCE_UID),
    )
    for keyword, value in dataset.items():
      instance.set(keyword, value)
    return instance

  @property
  def image_type(self) -> List[str]:
    value = self.get('ImageType')
    if value is None:
      return []
    if isinstance(value, str):
      return value.split('\\')
    return list(value)

  @property
  def image_flavor(self) -> str:
    """Returns third value of ImageType, e.g. VOLUME, LABEL, or OVERVIEW."""
    image_type = self.image_type
    if len(image_type) < 3:
      return ''
    return str(image_type[2]).upper()

  @property
  def samples_per_pixel(self) -> Optional[int]:
    return self.get('SamplesPerPixel')

  @property
  def photometric_interpretation(self) -> str:
    return self.get('PhotometricInterpretation', '')

  @property
  def is_monochrome(self) -> bool:
    return (
        self.samples_per_pixel == 1
        and self.photometric_interpretation == _MONOCHROME2
    )

  @property
  def frame_of_reference_uid(self) -> str:
    return self.get('FrameOfReferenceUID', '')

  @property
  def container_identifier(self) -> str:
    return self.get('ContainerIdentifier', '')

  @property
  def acquisition_uid(self) -> Optional[str]:
    return self.get('AcquisitionUID')

  @property
  def optical_path_identifiers(self) -> List[str]:
    """Returns OpticalPathIdentifier of each OpticalPathSequence item."""
    identifiers = []
    for item in self.get('OpticalPathSequence') or []:
      identifier = item.get('OpticalPathIdentifier') if isinstance(
          item, Mapping
      ) else None
      if identifier is not None:
        identifiers.append(str(identifier))
    return identifiers


@dataclasses.dataclass
class Series(_MetadataRecord):
  """Metadata of one DICOM series and its instances.

  Instances are unique by SOPInstanceUID and iterate in the order they were
  first added.
  """

  _IDENTITY_KEYWORDS: ClassVar[FrozenSet[str]] = frozenset(
      [SERIES_INSTANCE_UID]
  )
  _KEYWORD_ATTRIBUTES: ClassVar[Mapping[str, str]] = {
      SERIES_INSTANCE_UID: 'series_instance_uid',
      'Modality': 'modality',
      'SeriesNumber': 'series_number',
      'SeriesDate': 'series_date',
      'SeriesTime': 'series_time',
      'SeriesDescription': 'series_description',
  }

  series_instance_uid: str
  modality: str = ''
  series_number: int = 0
  series_date: str = ''
  series_time: str = ''
  series_description: str = ''
  extensions: Dict[str, Any] = dataclasses.field(default_factory=dict)
  instances: List[Instance] = dataclasses.field(default_factory=list)
  _instances_by_uid: Dict[str, Instance] = dataclasses.field(
      default_factory=dict, init=False, repr=False, compare=False
  )

  @classmethod
  def create(
      cls,
      series_instance_uid: str,
      first_instance: Optional[Instance] = None,
  ) -> Series:
    """Creates an empty series, summary seeded from first_instance."""
    series = Series(series_instance_uid)
    if first_instance is not None:
      for keyword in _SERIES_SUMMARY_KEYWORDS:
        value = first_instance.get(keyword)
        if value is not None:
          series.set(keyword, value)
      series.set(STUDY_INSTANCE_UID, first_instance.study_instance_uid)
    return series

  def add_instance(self, instance: Instance) -> bool:
    """Adds instance; returns False if SOPInstanceUID is already present."""
    if instance.sop_instance_uid in self._instances_by_uid:
      return False
    self._instances_by_uid[instance.sop_instance_uid] = instance
    self.instances.append(instance)
    return True

  def add_instances(self, instances: Iterable[Instance]) -> int:
    """Adds instances; returns number of instances not already present."""
    return sum(1 for instance in instances if self.add_instance(instance))

  def get_instance(self, sop_instance_uid: str) -> Optional[Instance]:
    return self._instances_by_uid.get(sop_instance_uid)


@dataclasses.dataclass
class Study(_MetadataRecord):
  """Metadata of one DICOM study and its series."""

  _IDENTITY_KEYWORDS: ClassVar[FrozenSet[str]] = frozenset(
      [STUDY_INSTANCE_UID]
  )
  _KEYWORD_ATTRIBUTES: ClassVar[Mapping[str, str]] = {
      STUDY_INSTANCE_UID: 'study_instance_uid',
      'StudyDescription': 'study_description',
      'PatientID': 'patient_id',
      'PatientName': 'patient_name',
      'StudyDate': 'study_date',
      'AccessionNumber': 'accession_number',
      'NumInstances': 'num_instances',
      'ModalitiesInStudy': 'modalities_in_study',
      'NumberOfStudyRelatedSeries': 'number_of_study_related_series',
      'isLoaded': 'is_loaded',
  }

  study_instance_uid: str
  study_description: str = ''
  patient_id: str = ''
  patient_name: str = ''
  study_date: str = ''
  accession_number: str = ''
  num_instances: int = 0
  modalities_in_study: List[str] = dataclasses.field(default_factory=list)
  number_of_study_related_series: Optional[int] = None
  is_loaded: bool = False
  extensions: Dict[str, Any] = dataclasses.field(default_factory=dict)
  series: List[Series] = dataclasses.field(default_factory=list)

  def get_series(self, series_instance_uid: str) -> Optional[Series]:
    for series in self.series:
      if series.series_instance_uid == series_instance_uid:
        return series
    return None

  def add_modality(self, modality: Optional[str]) -> None:
    if modality and modality not in self.modalities_in_study:
      self.modalities_in_study.append(modality)

  def add_instances_to_series(self, instances: Iterable[Instance]) -> None:
    """Adds instances to their series, creating series as needed."""
    instances_by_series = collections.OrderedDict()
    for instance in instances:
      instances_by_series.setdefault(instance.series_instance_uid, []).append(
          instance
      )
    for series_instance_uid, series_instances in instances_by_series.items():
      if not self.study_description:
        self.study_description = series_instances[0].get(
            'StudyDescription', ''
        )
      series = self.get_series(series_instance_uid)
      if series is None:
        series = Series.create(series_instance_uid, series_instances[0])
        self.series.append(series)
      series.add_instances(series_instances)

  def set_series_metadata(
      self, series_instance_uid: str, metadata: Mapping[str, Any]
  ) -> Series:
    """Merges metadata onto series, creating the series if undefined."""
    series = self.get_series(series_instance_uid)
    if series is None:
      series = Series.create(series_instance_uid)
      self.series.append(series)
    series.update(metadata)
    return series
