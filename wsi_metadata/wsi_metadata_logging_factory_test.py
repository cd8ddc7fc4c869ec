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
"""Tests for wsi metadata logging factory."""
import logging
from typing import Any, Mapping, Optional
from unittest import mock

from absl.testing import absltest
from absl.testing import parameterized

from wsi_metadata import wsi_metadata_logging_factory


def _create_logger(
    name: Optional[str] = None, signature: Optional[Mapping[str, Any]] = None
) -> wsi_metadata_logging_factory.AbstractLoggingInterface:
  return wsi_metadata_logging_factory.PythonLoggerFactory(name).create_logger(
      signature
  )


class WsiMetadataLoggingFactoryTest(parameterized.TestCase):

  @parameterized.named_parameters([
      dict(testcase_name='debug', method='debug', level=logging.DEBUG),
      dict(testcase_name='info', method='info', level=logging.INFO),
      dict(testcase_name='warning', method='warning', level=logging.WARNING),
      dict(testcase_name='error', method='error', level=logging.ERROR),
      dict(testcase_name='critical', method='critical', level=logging.CRITICAL),
  ])
  @mock.patch.object(logging.Logger, 'isEnabledFor', return_value=True)
  @mock.patch.object(logging.Logger, 'log', autospec=True)
  def test_logger_level(self, mock_log, unused_mock_enabled, method, level):
    getattr(_create_logger(name='named_logger'), method)('test')
    mock_log.assert_called_once_with(
        logging.getLogger('named_logger'), level, 'test'
    )

  @mock.patch.object(logging.Logger, 'isEnabledFor', return_value=False)
  @mock.patch.object(logging.Logger, 'log', autospec=True)
  def test_logger_skips_disabled_level(self, mock_log, unused_mock_enabled):
    _create_logger().debug('test')
    mock_log.assert_not_called()

  @mock.patch.object(logging.Logger, 'isEnabledFor', return_value=True)
  @mock.patch.object(logging.Logger, 'log', autospec=True)
  def test_logger_complex_structure(self, mock_log, unused_mock_enabled):
    _create_logger(None, {'create': 'create_val'}).warning(
        'test', {'b': 2, 'a': 1}, ValueError('Bad_Value'), None, {}
    )
    mock_log.assert_called_once_with(
        logging.getLogger(),
        logging.WARNING,
        'test; a: 1; b: 2; create: create_val; EXCEPTION: Bad_Value',
    )

  def test_format_structured_message_without_elements(self):
    self.assertEqual(
        wsi_metadata_logging_factory.format_structured_message('msg', {}),
        'msg',
    )

  def test_create_logger_default_factory(self):
    logger = wsi_metadata_logging_factory.create_logger()
    self.assertIs(
        logger._logger,
        logging.getLogger(
            wsi_metadata_logging_factory.DEFAULT_WSI_METADATA_PYTHON_LOGGER_NAME
        ),
    )

  def test_create_logger_custom_factory(self):
    factory = mock.create_autospec(
        wsi_metadata_logging_factory.AbstractLoggingInterfaceFactory,
        instance=True,
    )
    wsi_metadata_logging_factory.create_logger(factory, {'a': 1})
    factory.create_logger.assert_called_once_with({'a': 1})


if __name__ == '__main__':
  absltest.main()
