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
"""Tests for slide grouping."""
import json
from typing import Any, List, Mapping
from unittest import mock

from absl.testing import absltest
from absl.testing import parameterized

from wsi_metadata import metadata_model
from wsi_metadata import series_metadata_bundle
from wsi_metadata import slide_grouping
from wsi_metadata import wsi_metadata_logging_factory
from wsi_metadata.test_utils import wsi_metadata_test_utils

_SERIES_UID_1 = wsi_metadata_test_utils.TEST_SERIES_UID_1
_SERIES_UID_2 = wsi_metadata_test_utils.TEST_SERIES_UID_2
_SERIES_UID_3 = wsi_metadata_test_utils.TEST_SERIES_UID_3


def _bundle(
    series_instance_uid: str,
    instances: List[Mapping[str, Any]],
    description: str = '',
) -> series_metadata_bundle.SeriesMetadataBundle:
  return series_metadata_bundle.SeriesMetadataBundle.from_records(
      series_instance_uid, instances, series_description=description
  )


def _instance(
    sop_instance_uid: str, series_instance_uid: str, **kwargs
) -> Mapping[str, Any]:
  return wsi_metadata_test_utils.create_naturalized_instance(
      sop_instance_uid, series_instance_uid=series_instance_uid, **kwargs
  )


def _mock_logging_factory():
  logger = mock.create_autospec(
      wsi_metadata_logging_factory.AbstractLoggingInterface, instance=True
  )
  factory = mock.create_autospec(
      wsi_metadata_logging_factory.AbstractLoggingInterfaceFactory,
      instance=True,
  )
  factory.create_logger.return_value = logger
  return factory, logger


def _uids(instances: List[metadata_model.Instance]) -> List[str]:
  return [instance.sop_instance_uid for instance in instances]


class SlideGroupingTest(parameterized.TestCase):

  def test_rgb_and_monochrome_series_form_separate_slides(self):
    slides = slide_grouping.group_series_into_slides([
        _bundle(_SERIES_UID_1, [_instance('1.1', _SERIES_UID_1)]),
        _bundle(
            _SERIES_UID_2,
            [_instance('2.1', _SERIES_UID_2, samples_per_pixel=1)],
        ),
    ])
    self.assertLen(slides, 2)
    self.assertFalse(slides[0].are_images_monochrome)
    self.assertTrue(slides[1].are_images_monochrome)
    self.assertEqual(slides[0].series_instance_uids, [_SERIES_UID_1])
    self.assertEqual(slides[1].series_instance_uids, [_SERIES_UID_2])

  def test_monochrome_optical_paths_merge_into_multiplexed_slide(self):
    slides = slide_grouping.group_series_into_slides([
        _bundle(
            _SERIES_UID_1,
            [
                _instance(
                    '1.1',
                    _SERIES_UID_1,
                    samples_per_pixel=1,
                    optical_path_identifiers=['1'],
                )
            ],
            description='DAPI',
        ),
        _bundle(
            _SERIES_UID_2,
            [
                _instance(
                    '2.1',
                    _SERIES_UID_2,
                    samples_per_pixel=1,
                    optical_path_identifiers=['2'],
                )
            ],
            description='CD3',
        ),
    ])
    self.assertLen(slides, 1)
    slide = slides[0]
    self.assertEqual(slide.description, 'Multiplexed-Samples')
    self.assertEqual(slide.series_instance_uids, [_SERIES_UID_1, _SERIES_UID_2])
    self.assertEqual(slide.optical_path_identifiers, ['1', '2'])
    self.assertEqual(_uids(slide.volume_metadata), ['1.1', '2.1'])
    self.assertEqual(slide.key, _SERIES_UID_1)
    self.assertEqual(slide.key_optical_path_identifier, '1')
    self.assertTrue(slide.are_images_monochrome)

  def test_single_optical_path_keeps_series_description(self):
    slides = slide_grouping.group_series_into_slides([
        _bundle(
            _SERIES_UID_1,
            [_instance('1.1', _SERIES_UID_1), _instance('1.2', _SERIES_UID_1)],
            description='H&E',
        ),
    ])
    self.assertLen(slides, 1)
    self.assertEqual(slides[0].description, 'H&E')
    self.assertEqual(slides[0].optical_path_identifiers, ['1'])
    self.assertEqual(
        slides[0].frame_of_reference_uid,
        wsi_metadata_test_utils.TEST_FRAME_OF_REFERENCE_UID_1,
    )
    self.assertEqual(
        slides[0].container_identifier,
        wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_1,
    )

  @parameterized.named_parameters([
      dict(
          testcase_name='frame_of_reference',
          kwargs=dict(
              frame_of_reference_uid=(
                  wsi_metadata_test_utils.TEST_FRAME_OF_REFERENCE_UID_2
              )
          ),
      ),
      dict(
          testcase_name='container_identifier',
          kwargs=dict(
              container_identifier=(
                  wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_2
              )
          ),
      ),
  ])
  def test_series_with_different_location_form_separate_slides(self, kwargs):
    slides = slide_grouping.group_series_into_slides([
        _bundle(_SERIES_UID_1, [_instance('1.1', _SERIES_UID_1)]),
        _bundle(_SERIES_UID_2, [_instance('2.1', _SERIES_UID_2, **kwargs)]),
    ])
    self.assertLen(slides, 2)
    self.assertEqual(_uids(slides[1].volume_metadata), ['2.1'])

  def test_empty_series_skipped_with_warning(self):
    factory, logger = _mock_logging_factory()
    slides = slide_grouping.group_series_into_slides(
        [
            _bundle(
                _SERIES_UID_1,
                [_instance('1.1', _SERIES_UID_1, image_flavor='LABEL')],
            ),
            _bundle(_SERIES_UID_2, [_instance('2.1', _SERIES_UID_2)]),
        ],
        logging_factory=factory,
    )
    self.assertLen(slides, 1)
    self.assertEqual(slides[0].series_instance_uids, [_SERIES_UID_2])
    self.assertEmpty(slides[0].label_metadata)
    logger.warning.assert_called_once_with(
        'Series has no volume images; skipped.',
        {'SeriesInstanceUID': _SERIES_UID_1},
    )

  def test_mismatched_volume_instance_discarded_with_warning(self):
    factory, logger = _mock_logging_factory()
    slides = slide_grouping.group_series_into_slides(
        [
            _bundle(
                _SERIES_UID_1,
                [
                    _instance('1.1', _SERIES_UID_1),
                    _instance(
                        '1.2',
                        _SERIES_UID_1,
                        container_identifier=(
                            wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_2
                        ),
                    ),
                    _instance('1.3', _SERIES_UID_1),
                ],
            ),
        ],
        logging_factory=factory,
    )
    self.assertLen(slides, 1)
    self.assertEqual(_uids(slides[0].volume_metadata), ['1.1', '1.3'])
    logger.warning.assert_called_once_with(
        'Volume instance discarded from slide.',
        {'SOPInstanceUID': '1.2', 'SeriesInstanceUID': _SERIES_UID_1},
        {
            'ContainerIdentifier': (
                wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_2
            ),
            'slide_ContainerIdentifier': (
                wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_1
            ),
        },
    )

  def test_volume_instance_with_different_color_model_discarded(self):
    factory, logger = _mock_logging_factory()
    slides = slide_grouping.group_series_into_slides(
        [
            _bundle(
                _SERIES_UID_1,
                [
                    _instance('1.1', _SERIES_UID_1, samples_per_pixel=1),
                    _instance('1.2', _SERIES_UID_1),
                ],
            ),
        ],
        logging_factory=factory,
    )
    self.assertEqual(_uids(slides[0].volume_metadata), ['1.1'])
    logger.warning.assert_called_once()

  def test_label_and_overview_must_match_slide_location(self):
    factory, logger = _mock_logging_factory()
    acquisition = {'AcquisitionUID': 'A1'}
    slides = slide_grouping.group_series_into_slides(
        [
            _bundle(
                _SERIES_UID_1,
                [
                    _instance('1.1', _SERIES_UID_1, **acquisition),
                    _instance(
                        '1.2', _SERIES_UID_1, image_flavor='LABEL', **acquisition
                    ),
                    _instance(
                        '1.3',
                        _SERIES_UID_1,
                        image_flavor='LABEL',
                        **acquisition,
                        frame_of_reference_uid=(
                            wsi_metadata_test_utils.TEST_FRAME_OF_REFERENCE_UID_2
                        ),
                    ),
                    _instance(
                        '1.4',
                        _SERIES_UID_1,
                        image_flavor='OVERVIEW',
                        **acquisition,
                    ),
                    _instance(
                        '1.5',
                        _SERIES_UID_1,
                        image_flavor='OVERVIEW',
                        **acquisition,
                        container_identifier=(
                            wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_2
                        ),
                    ),
                ],
            ),
        ],
        logging_factory=factory,
    )
    self.assertEqual(_uids(slides[0].label_metadata), ['1.2'])
    self.assertEqual(_uids(slides[0].overview_metadata), ['1.4'])
    self.assertEqual(logger.warning.call_count, 2)

  def test_labels_from_other_acquisition_discarded(self):
    factory, logger = _mock_logging_factory()
    slides = slide_grouping.group_series_into_slides(
        [
            _bundle(
                _SERIES_UID_1,
                [
                    _instance('1.1', _SERIES_UID_1, AcquisitionUID='A1'),
                    _instance(
                        '1.2',
                        _SERIES_UID_1,
                        image_flavor='LABEL',
                        AcquisitionUID='A1',
                    ),
                    _instance(
                        '1.3',
                        _SERIES_UID_1,
                        image_flavor='LABEL',
                        AcquisitionUID='A2',
                    ),
                ],
            ),
        ],
        logging_factory=factory,
    )
    self.assertEqual(_uids(slides[0].label_metadata), ['1.2'])
    logger.warning.assert_called_once_with(
        'Label instance from another acquisition discarded from slide.',
        {'SOPInstanceUID': '1.3', 'SeriesInstanceUID': _SERIES_UID_1},
        {'AcquisitionUID': 'A2', 'slide_AcquisitionUID': 'A1'},
    )

  def test_overviews_without_acquisition_uid_discarded_when_several(self):
    slides = slide_grouping.group_series_into_slides([
        _bundle(
            _SERIES_UID_1,
            [
                _instance('1.1', _SERIES_UID_1),
                _instance('1.2', _SERIES_UID_1, image_flavor='OVERVIEW'),
                _instance('1.3', _SERIES_UID_1, image_flavor='OVERVIEW'),
            ],
        ),
    ])
    self.assertEqual(slides[0].overview_metadata, [])

  def test_single_label_kept_without_acquisition_uid(self):
    slides = slide_grouping.group_series_into_slides([
        _bundle(
            _SERIES_UID_1,
            [
                _instance('1.1', _SERIES_UID_1, AcquisitionUID='A1'),
                _instance('1.2', _SERIES_UID_1, image_flavor='LABEL'),
            ],
        ),
    ])
    self.assertEqual(_uids(slides[0].label_metadata), ['1.2'])

  def test_label_of_monochrome_series_accepted_on_location_only(self):
    slides = slide_grouping.group_series_into_slides([
        _bundle(
            _SERIES_UID_1,
            [
                _instance('1.1', _SERIES_UID_1, samples_per_pixel=1),
                _instance('1.2', _SERIES_UID_1, image_flavor='LABEL'),
            ],
        ),
    ])
    self.assertEqual(_uids(slides[0].label_metadata), ['1.2'])

  def test_series_with_conflicting_first_instance_not_merged(self):
    # Second series shares the frame of reference but not the container; it
    # forms its own slide rather than becoming part of the first.
    slides = slide_grouping.group_series_into_slides([
        _bundle(_SERIES_UID_1, [_instance('1.1', _SERIES_UID_1)]),
        _bundle(
            _SERIES_UID_2,
            [
                _instance(
                    '2.1',
                    _SERIES_UID_2,
                    container_identifier=(
                        wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_2
                    ),
                ),
                _instance('2.2', _SERIES_UID_2),
            ],
        ),
    ])
    self.assertLen(slides, 2)
    self.assertEqual(_uids(slides[0].volume_metadata), ['1.1'])
    self.assertEqual(_uids(slides[1].volume_metadata), ['2.1'])
    self.assertEqual(
        slides[1].container_identifier,
        wsi_metadata_test_utils.TEST_CONTAINER_IDENTIFIER_2,
    )

  def test_selected_series_sets_slide_key(self):
    bundles = [
        _bundle(
            _SERIES_UID_1,
            [
                _instance(
                    '1.1',
                    _SERIES_UID_1,
                    samples_per_pixel=1,
                    optical_path_identifiers=['1'],
                )
            ],
        ),
        _bundle(
            _SERIES_UID_2,
            [
                _instance(
                    '2.1',
                    _SERIES_UID_2,
                    samples_per_pixel=1,
                    optical_path_identifiers=['2'],
                ),
                _instance(
                    '2.2',
                    _SERIES_UID_2,
                    samples_per_pixel=1,
                    optical_path_identifiers=['3'],
                ),
            ],
        ),
    ]
    slides = slide_grouping.group_series_into_slides(
        bundles, initially_selected_series_instance_uid=_SERIES_UID_2
    )
    self.assertLen(slides, 1)
    self.assertEqual(slides[0].key, _SERIES_UID_2)
    self.assertEqual(slides[0].key_optical_path_identifier, '3')
    self.assertEqual(slides[0].optical_path_identifiers, ['1', '2', '3'])

  def test_unknown_selected_series_keeps_default_key(self):
    slides = slide_grouping.group_series_into_slides(
        [_bundle(_SERIES_UID_1, [_instance('1.1', _SERIES_UID_1)])],
        initially_selected_series_instance_uid=_SERIES_UID_3,
    )
    self.assertEqual(slides[0].key, _SERIES_UID_1)
    self.assertEqual(slides[0].key_optical_path_identifier, '1')

  def test_no_bundles(self):
    self.assertEqual(slide_grouping.group_series_into_slides([]), [])

  def test_slide_to_dict(self):
    slides = slide_grouping.group_series_into_slides(
        [_bundle(_SERIES_UID_1, [_instance('1.1', _SERIES_UID_1)], 'H&E')]
    )
    result = slides[0].to_dict()
    self.assertEqual(result['key'], _SERIES_UID_1)
    self.assertEqual(result['keyOpticalPathIdentifier'], '1')
    self.assertEqual(result['seriesInstanceUids'], [_SERIES_UID_1])
    self.assertFalse(result['areImagesMonochrome'])
    self.assertEqual(result['description'], 'H&E')
    self.assertEqual(
        result['volumeMetadata'], [_instance('1.1', _SERIES_UID_1)]
    )
    self.assertEqual(result['labelMetadata'], [])
    self.assertEqual(
        json.loads(slides[0].to_json())['volumeMetadata'][0]['SOPInstanceUID'],
        '1.1',
    )

  def test_sort_slides_by_container_identifier(self):
    slides = [
        slide_grouping.Slide(key='a', container_identifier='10'),
        slide_grouping.Slide(key='b', container_identifier='abc'),
        slide_grouping.Slide(key='c', container_identifier='2'),
        slide_grouping.Slide(key='d', container_identifier=''),
        slide_grouping.Slide(key='e', container_identifier='2'),
    ]
    self.assertEqual(
        [
            slide.key
            for slide in slide_grouping.sort_slides_by_container_identifier(
                slides
            )
        ],
        ['c', 'e', 'a', 'b', 'd'],
    )


if __name__ == '__main__':
  absltest.main()
