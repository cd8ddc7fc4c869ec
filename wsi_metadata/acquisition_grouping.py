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
"""Groups the series of a study into RGB and multiplexed acquisitions.

Each series whose first volume instance has more than one sample per pixel is
its own acquisition. All series whose first volume instance has one sample per
pixel are pooled, with their label and overview images, into a single
Multiplexed-Samples acquisition.

Pooling assumes a study holds at most one multiplexed acquisition and that
every monochrome series belongs to it. Studies with several independent
multiplexed panels are pooled into one acquisition.
"""
from __future__ import annotations

import dataclasses
from typing import List, Optional, Sequence

import dataclasses_json

from wsi_metadata import metadata_model
from wsi_metadata import series_metadata_bundle
from wsi_metadata import wsi_metadata_logging_factory


@dataclasses_json.dataclass_json(letter_case=dataclasses_json.LetterCase.CAMEL)
@dataclasses.dataclass
class Acquisition:
  """Images acquired together in one scan.

  Attributes:
    key: SeriesInstanceUID identifying the acquisition.
    volume_metadata: Volume instances of the acquisition.
    label_metadata: Label instances of the acquisition.
    overview_metadata: Overview instances of the acquisition.
    is_multi_sample: True for the pooled monochrome acquisition.
    multi_samples_series_uids: Series pooled into a multi sample acquisition.
    multi_samples_key_optical_path_identifier: Optical path of the selected
      series of a multi sample acquisition.
    description: Description of acquisition.
  """

  key: str = ''
  volume_metadata: List[metadata_model.Instance] = (
      series_metadata_bundle.instance_list_field()
  )
  label_metadata: List[metadata_model.Instance] = (
      series_metadata_bundle.instance_list_field()
  )
  overview_metadata: List[metadata_model.Instance] = (
      series_metadata_bundle.instance_list_field()
  )
  is_multi_sample: bool = False
  multi_samples_series_uids: List[str] = dataclasses.field(
      default_factory=list
  )
  multi_samples_key_optical_path_identifier: str = ''
  description: str = ''


def _is_single_sample(instance: metadata_model.Instance) -> bool:
  return instance.samples_per_pixel == 1


def _pool_series(
    pooled: Acquisition,
    bundle: series_metadata_bundle.SeriesMetadataBundle,
    selected_series_instance_uid: str,
    logger: wsi_metadata_logging_factory.AbstractLoggingInterface,
) -> None:
  """Adds single sample volume, label and overview images to pooled."""
  series_instance_uid = bundle.series_instance_uid
  for instance in bundle.volume_metadata:
    if not _is_single_sample(instance):
      logger.warning(
          'Multi-sample volume instance discarded from Multiplexed-Samples'
          ' acquisition.',
          {
              metadata_model.SOP_INSTANCE_UID: instance.sop_instance_uid,
              metadata_model.SERIES_INSTANCE_UID: series_instance_uid,
              'SamplesPerPixel': instance.samples_per_pixel,
          },
      )
      continue
    pooled.volume_metadata.append(instance)
    if series_instance_uid not in pooled.multi_samples_series_uids:
      pooled.multi_samples_series_uids.append(series_instance_uid)
    if (
        selected_series_instance_uid
        and selected_series_instance_uid == series_instance_uid
    ):
      pooled.key = selected_series_instance_uid
      optical_paths = instance.optical_path_identifiers
      if optical_paths:
        pooled.multi_samples_key_optical_path_identifier = optical_paths[0]
    if not pooled.key:
      pooled.key = series_instance_uid
  pooled.label_metadata.extend(bundle.label_metadata)
  pooled.overview_metadata.extend(bundle.overview_metadata)


def group_series_into_acquisitions(
    bundles: Sequence[series_metadata_bundle.SeriesMetadataBundle],
    initially_selected_series_instance_uid: str = '',
    logging_factory: Optional[
        wsi_metadata_logging_factory.AbstractLoggingInterfaceFactory
    ] = None,
) -> List[Acquisition]:
  """Groups series into acquisitions.

  Args:
    bundles: Per series metadata in display order.
    initially_selected_series_instance_uid: Monochrome series whose UID and
      optical path become the key of the Multiplexed-Samples acquisition.
    logging_factory: Factory used to create logger for discarded instances.

  Returns:
    One acquisition per RGB series in series order, followed by the
    Multiplexed-Samples acquisition if any series is monochrome.
  """
  logger = wsi_metadata_logging_factory.create_logger(logging_factory)
  acquisitions = []
  monochrome_bundles = []
  for bundle in bundles:
    if not bundle.volume_metadata:
      logger.warning(
          'Series has no volume images; skipped.',
          {metadata_model.SERIES_INSTANCE_UID: bundle.series_instance_uid},
      )
      continue
    if _is_single_sample(bundle.volume_metadata[0]):
      monochrome_bundles.append(bundle)
      continue
    acquisitions.append(
        Acquisition(
            key=bundle.series_instance_uid,
            volume_metadata=list(bundle.volume_metadata),
            label_metadata=list(bundle.label_metadata),
            overview_metadata=list(bundle.overview_metadata),
            description=bundle.series_description,
        )
    )
  pooled = Acquisition(
      is_multi_sample=True,
      description=series_metadata_bundle.MULTIPLEXED_SAMPLES_DESCRIPTION,
  )
  for bundle in monochrome_bundles:
    _pool_series(pooled, bundle, initially_selected_series_instance_uid, logger)
  if pooled.volume_metadata:
    acquisitions.append(pooled)
  return acquisitions
