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
"""Volume, label and overview image metadata of one series."""
from __future__ import annotations

import dataclasses
from typing import Any, Dict, Iterable, List, Optional, Sequence

import dataclasses_json

from wsi_metadata import dicom_metadata_store
from wsi_metadata import dicom_naturalizer
from wsi_metadata import metadata_model

VL_WHOLE_SLIDE_MICROSCOPY_IMAGE_SOP_CLASS_UID = '1.2.840.10008.5.1.4.1.1.77.1.6'

# Description of groupings pooling more than one optical path.
MULTIPLEXED_SAMPLES_DESCRIPTION = 'Multiplexed-Samples'

_VOLUME_FLAVORS = frozenset([metadata_model.VOLUME, metadata_model.THUMBNAIL])


def _encode_instances(
    instances: Sequence[metadata_model.Instance],
) -> List[Dict[str, Any]]:
  return [instance.to_dataset() for instance in instances]


def _decode_instances(
    datasets: Sequence[Dict[str, Any]],
) -> List[metadata_model.Instance]:
  return [metadata_model.Instance.from_dataset(ds) for ds in datasets]


def instance_list_field() -> Any:
  """Instance list serialized as flat keyword keyed datasets."""
  return dataclasses.field(
      default_factory=list,
      metadata=dataclasses_json.config(
          encoder=_encode_instances, decoder=_decode_instances
      ),
  )


def is_wsi_instance(instance: metadata_model.Instance) -> bool:
  return (
      instance.sop_class_uid == VL_WHOLE_SLIDE_MICROSCOPY_IMAGE_SOP_CLASS_UID
  )


@dataclasses.dataclass
class SeriesMetadataBundle:
  """Whole slide image instances of a series grouped by image flavor.

  Attributes:
    series_instance_uid: SeriesInstanceUID of series.
    series_description: SeriesDescription of series.
    volume_metadata: VOLUME and THUMBNAIL instances.
    label_metadata: LABEL instances.
    overview_metadata: OVERVIEW instances.
  """

  series_instance_uid: str
  series_description: str = ''
  volume_metadata: List[metadata_model.Instance] = dataclasses.field(
      default_factory=list
  )
  label_metadata: List[metadata_model.Instance] = dataclasses.field(
      default_factory=list
  )
  overview_metadata: List[metadata_model.Instance] = dataclasses.field(
      default_factory=list
  )

  def add_instance(self, instance: metadata_model.Instance) -> bool:
    """Adds whole slide instance to list matching its image flavor.

    Args:
      instance: Instance to add.

    Returns:
      False if instance is not a whole slide image or has an unrecognized
      image flavor.
    """
    if not is_wsi_instance(instance):
      return False
    flavor = instance.image_flavor
    if flavor in _VOLUME_FLAVORS:
      self.volume_metadata.append(instance)
    elif flavor == metadata_model.LABEL:
      self.label_metadata.append(instance)
    elif flavor == metadata_model.OVERVIEW:
      self.overview_metadata.append(instance)
    else:
      return False
    return True

  @classmethod
  def from_series(cls, series: metadata_model.Series) -> SeriesMetadataBundle:
    bundle = SeriesMetadataBundle(
        series.series_instance_uid, series.series_description
    )
    for instance in series.instances:
      bundle.add_instance(instance)
    return bundle

  @classmethod
  def from_records(
      cls,
      series_instance_uid: str,
      records: Iterable[dicom_naturalizer.RawDicomRecord],
      series_description: Optional[str] = None,
  ) -> SeriesMetadataBundle:
    """Creates bundle from naturalized datasets or DICOM JSON.

    Args:
      series_instance_uid: SeriesInstanceUID of series.
      records: Instance metadata of the series.
      series_description: Description of series; defaults to the
        SeriesDescription of the first record that defines one.

    Returns:
      Bundle of the series' whole slide image instances.

    Raises:
      DicomInstanceDecodeError: Record cannot be decoded.
      MissingDicomUidError: Record does not define study, series, and SOP
        instance UIDs.
    """
    instances = [
        metadata_model.Instance.from_dataset(dicom_naturalizer.naturalize(r))
        for r in records
    ]
    if series_description is None:
      series_description = next(
          (
              instance.get('SeriesDescription')
              for instance in instances
              if instance.get('SeriesDescription')
          ),
          '',
      )
    bundle = SeriesMetadataBundle(series_instance_uid, series_description)
    for instance in instances:
      bundle.add_instance(instance)
    return bundle


def create_series_bundles(
    store: dicom_metadata_store.DicomMetadataStore, study_instance_uid: str
) -> List[SeriesMetadataBundle]:
  """Returns one bundle per series of a study in store order.

  Returns an empty list if the study is not in the store.
  """
  study = store.get_study(study_instance_uid)
  if study is None:
    return []
  return [SeriesMetadataBundle.from_series(series) for series in study.series]
