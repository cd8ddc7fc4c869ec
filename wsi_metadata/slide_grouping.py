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
"""Groups series into the physical glass slides they image.

Series are grouped by the frame of reference, container identifier and
color model (RGB or MONOCHROME2) of their first volume instance. Every volume,
label and overview instance added to a slide must share the slide's frame of
reference and container identifier; volume instances must also share its color
model. Instances that do not are discarded with a warning. When a series has
several label or overview images, only those sharing the AcquisitionUID of its
first volume instance are considered.

Slides are derived views. They are rebuilt from the bundles on each call and
never modify the metadata store.
"""
from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Optional, Sequence

import dataclasses_json

from wsi_metadata import metadata_model
from wsi_metadata import series_metadata_bundle
from wsi_metadata import wsi_metadata_logging_factory


@dataclasses_json.dataclass_json(letter_case=dataclasses_json.LetterCase.CAMEL)
@dataclasses.dataclass
class Slide:
  """Series believed to image one physical glass slide.

  Attributes:
    key: SeriesInstanceUID used to identify the slide; the first contributing
      series unless a selected series contributes to the slide.
    key_optical_path_identifier: Optical path displayed first.
    frame_of_reference_uid: FrameOfReferenceUID shared by the slide's images.
    container_identifier: ContainerIdentifier shared by the slide's images.
    series_instance_uids: Contributing series in processing order.
    volume_metadata: Volume instances of the slide.
    label_metadata: Label instances of the slide.
    overview_metadata: Overview instances of the slide.
    are_images_monochrome: True if volume images are MONOCHROME2 with one
      sample per pixel.
    optical_path_identifiers: Distinct optical paths of volume instances.
    description: Description of slide.
  """

  key: str = ''
  key_optical_path_identifier: str = ''
  frame_of_reference_uid: str = ''
  container_identifier: str = ''
  series_instance_uids: List[str] = dataclasses.field(default_factory=list)
  volume_metadata: List[metadata_model.Instance] = (
      series_metadata_bundle.instance_list_field()
  )
  label_metadata: List[metadata_model.Instance] = (
      series_metadata_bundle.instance_list_field()
  )
  overview_metadata: List[metadata_model.Instance] = (
      series_metadata_bundle.instance_list_field()
  )
  are_images_monochrome: bool = False
  optical_path_identifiers: List[str] = dataclasses.field(default_factory=list)
  description: str = ''

  def location_mismatch(
      self, instance: metadata_model.Instance
  ) -> Dict[str, Any]:
    mismatch = {}
    if instance.frame_of_reference_uid != self.frame_of_reference_uid:
      mismatch['FrameOfReferenceUID'] = instance.frame_of_reference_uid
      mismatch['slide_FrameOfReferenceUID'] = self.frame_of_reference_uid
    if instance.container_identifier != self.container_identifier:
      mismatch['ContainerIdentifier'] = instance.container_identifier
      mismatch['slide_ContainerIdentifier'] = self.container_identifier
    return mismatch

  def volume_mismatch(
      self, instance: metadata_model.Instance
  ) -> Dict[str, Any]:
    mismatch = self.location_mismatch(instance)
    if instance.is_monochrome != self.are_images_monochrome:
      mismatch['is_monochrome'] = instance.is_monochrome
      mismatch['slide_are_images_monochrome'] = self.are_images_monochrome
    return mismatch

  def matches(self, instance: metadata_model.Instance) -> bool:
    return not self.volume_mismatch(instance)


def _create_slide(
    bundle: series_metadata_bundle.SeriesMetadataBundle,
) -> Slide:
  first = bundle.volume_metadata[0]
  optical_paths = first.optical_path_identifiers
  return Slide(
      key=bundle.series_instance_uid,
      key_optical_path_identifier=optical_paths[0] if optical_paths else '',
      frame_of_reference_uid=first.frame_of_reference_uid,
      container_identifier=first.container_identifier,
      are_images_monochrome=first.is_monochrome,
      description=bundle.series_description,
  )


def _discarded(
    logger: wsi_metadata_logging_factory.AbstractLoggingInterface,
    msg: str,
    instance: metadata_model.Instance,
    mismatch: Dict[str, Any],
) -> None:
  logger.warning(
      msg,
      {
          metadata_model.SOP_INSTANCE_UID: instance.sop_instance_uid,
          metadata_model.SERIES_INSTANCE_UID: instance.series_instance_uid,
      },
      mismatch,
  )


def _same_acquisition(
    metadata: List[metadata_model.Instance],
    reference: metadata_model.Instance,
    name: str,
    logger: wsi_metadata_logging_factory.AbstractLoggingInterface,
) -> List[metadata_model.Instance]:
  """Returns label or overview images acquired with the reference volume.

  A single label or overview image is always kept. If a series holds several,
  only those whose AcquisitionUID equals the reference volume image's are
  kept; images without an AcquisitionUID are discarded.
  """
  if len(metadata) <= 1:
    return list(metadata)
  kept = []
  for instance in metadata:
    if (
        instance.acquisition_uid is not None
        and instance.acquisition_uid == reference.acquisition_uid
    ):
      kept.append(instance)
      continue
    _discarded(
        logger,
        f'{name} instance from another acquisition discarded from slide.',
        instance,
        {
            'AcquisitionUID': instance.acquisition_uid,
            'slide_AcquisitionUID': reference.acquisition_uid,
        },
    )
  return kept


def _add_series_to_slide(
    slide: Slide,
    bundle: series_metadata_bundle.SeriesMetadataBundle,
    selected_series_instance_uid: str,
    logger: wsi_metadata_logging_factory.AbstractLoggingInterface,
) -> None:
  """Adds instances of series that match slide to slide."""
  is_selected = (
      bool(selected_series_instance_uid)
      and selected_series_instance_uid == bundle.series_instance_uid
  )
  for instance in bundle.volume_metadata:
    mismatch = slide.volume_mismatch(instance)
    if mismatch:
      _discarded(
          logger, 'Volume instance discarded from slide.', instance, mismatch
      )
      continue
    slide.volume_metadata.append(instance)
    optical_paths = instance.optical_path_identifiers
    for optical_path in optical_paths:
      if optical_path not in slide.optical_path_identifiers:
        slide.optical_path_identifiers.append(optical_path)
    if is_selected:
      slide.key = selected_series_instance_uid
      if optical_paths:
        slide.key_optical_path_identifier = optical_paths[0]
  reference = bundle.volume_metadata[0]
  for metadata, slide_metadata, name in (
      (bundle.label_metadata, slide.label_metadata, 'Label'),
      (bundle.overview_metadata, slide.overview_metadata, 'Overview'),
  ):
    for instance in _same_acquisition(metadata, reference, name, logger):
      mismatch = slide.location_mismatch(instance)
      if mismatch:
        _discarded(
            logger, f'{name} instance discarded from slide.', instance, mismatch
        )
        continue
      slide_metadata.append(instance)
  if bundle.series_instance_uid not in slide.series_instance_uids:
    slide.series_instance_uids.append(bundle.series_instance_uid)
  if len(slide.optical_path_identifiers) > 1:
    slide.description = series_metadata_bundle.MULTIPLEXED_SAMPLES_DESCRIPTION


def group_series_into_slides(
    bundles: Sequence[series_metadata_bundle.SeriesMetadataBundle],
    initially_selected_series_instance_uid: str = '',
    logging_factory: Optional[
        wsi_metadata_logging_factory.AbstractLoggingInterfaceFactory
    ] = None,
) -> List[Slide]:
  """Groups series into slides.

  Args:
    bundles: Per series metadata in display order.
    initially_selected_series_instance_uid: Series whose UID and optical path
      become the key of the slide it contributes to.
    logging_factory: Factory used to create logger for discarded instances.

  Returns:
    Slides in order of the first series contributing to each.
  """
  logger = wsi_metadata_logging_factory.create_logger(logging_factory)
  slides: List[Slide] = []
  for bundle in bundles:
    if not bundle.volume_metadata:
      logger.warning(
          'Series has no volume images; skipped.',
          {metadata_model.SERIES_INSTANCE_UID: bundle.series_instance_uid},
      )
      continue
    first = bundle.volume_metadata[0]
    slide = next((s for s in slides if s.matches(first)), None)
    if slide is None:
      slide = _create_slide(bundle)
      slides.append(slide)
    _add_series_to_slide(
        slide, bundle, initially_selected_series_instance_uid, logger
    )
  return slides


def _numeric_container_identifier(slide: Slide) -> Optional[float]:
  try:
    return float(slide.container_identifier)
  except (TypeError, ValueError):
    return None


def sort_slides_by_container_identifier(
    slides: Sequence[Slide],
) -> List[Slide]:
  """Returns slides ordered by numeric container identifier.

  Sort is stable. Slides with non-numeric container identifiers follow the
  numerically identified slides in their original order.

  Args:
    slides: Slides to sort.
  """

  def _sort_key(slide: Slide):
    value = _numeric_container_identifier(slide)
    if value is None:
      return (1, 0.0)
    return (0, value)

  return sorted(slides, key=_sort_key)
