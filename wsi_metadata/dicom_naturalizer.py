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
"""Converts DICOM P10 bytes and DICOM JSON into naturalized datasets.

A naturalized dataset is a dict keyed by DICOM keyword, e.g.:

  {'SeriesInstanceUID': '1.2.3', 'ImageType': ['ORIGINAL', 'PRIMARY',
   'VOLUME'], 'OpticalPathSequence': [{'OpticalPathIdentifier': '1'}]}

Sequences become lists of naturalized datasets, multi-valued elements become
lists, single-valued elements become scalars. Elements without a keyword
(private tags) are keyed by their eight digit hex tag. Pixel data is not
retained.
"""
import io
import re
from typing import Any, Dict, Mapping, Union

import pydicom
from pydicom import errors as pydicom_errors
from pydicom import multival
from pydicom import uid as pydicom_uid
from pydicom import valuerep

from wsi_metadata import wsi_metadata_errors

NaturalizedDataset = Dict[str, Any]
RawDicomRecord = Union[
    bytes, bytearray, memoryview, pydicom.Dataset, Mapping[str, Any]
]

_DICOM_JSON_TAG = re.compile('[0-9A-Fa-f]{8}')
_PIXEL_DATA_KEYWORDS = frozenset(
    ['PixelData', 'FloatPixelData', 'DoubleFloatPixelData']
)


def _bulk_data_uri_handler(unused_uri: str) -> None:
  """Bulk data is not retrieved for metadata."""
  return None


def _naturalize_value(value: Any) -> Any:
  if isinstance(value, valuerep.PersonName):
    return str(value)
  if isinstance(value, valuerep.IS):
    return int(value)
  if isinstance(value, (valuerep.DSfloat, valuerep.DSdecimal)):
    return float(value)
  if isinstance(value, pydicom_uid.UID):
    return str(value)
  return value


def _naturalize_element(element: pydicom.DataElement) -> Any:
  if element.VR == 'SQ':
    return [naturalize_dataset(item) for item in element.value]
  value = element.value
  if isinstance(value, (multival.MultiValue, list)):
    return [_naturalize_value(item) for item in value]
  return _naturalize_value(value)


def _element_key(element: pydicom.DataElement) -> str:
  if element.keyword:
    return element.keyword
  return f'{int(element.tag):08X}'


def naturalize_dataset(dataset: pydicom.Dataset) -> NaturalizedDataset:
  """Returns naturalized dataset for a pydicom Dataset."""
  result = {}
  for element in dataset:
    key = _element_key(element)
    if key in _PIXEL_DATA_KEYWORDS:
      continue
    result[key] = _naturalize_element(element)
  return result


def naturalize_dicom_json(
    dicom_json: Mapping[str, Any],
) -> NaturalizedDataset:
  """Returns naturalized dataset for tag-keyed DICOM JSON.

  Args:
    dicom_json: DICOM JSON dataset, e.g. one item of a DICOMweb metadata
      response.

  Raises:
    DicomInstanceDecodeError: JSON is not valid DICOM JSON.
  """
  try:
    dataset = pydicom.Dataset.from_json(
        dict(dicom_json), bulk_data_uri_handler=_bulk_data_uri_handler
    )
  except (KeyError, TypeError, ValueError) as exp:
    raise wsi_metadata_errors.DicomInstanceDecodeError(
        'Error decoding DICOM JSON.'
    ) from exp
  return naturalize_dataset(dataset)


def naturalize_p10_bytes(
    data: Union[bytes, bytearray, memoryview],
) -> NaturalizedDataset:
  """Returns naturalized dataset for DICOM Part 10 bytes.

  Args:
    data: Bytes of a DICOM Part 10 file.

  Raises:
    DicomInstanceDecodeError: Bytes cannot be parsed as DICOM.
  """
  try:
    with io.BytesIO(bytes(data)) as stream:
      dataset = pydicom.dcmread(stream, stop_before_pixels=True)
  except (pydicom_errors.InvalidDicomError, EOFError, ValueError) as exp:
    raise wsi_metadata_errors.DicomInstanceDecodeError(
        'Error decoding DICOM Part 10 bytes.'
    ) from exp
  return naturalize_dataset(dataset)


def _is_dicom_json(record: Mapping[Any, Any]) -> bool:
  return bool(record) and all(
      isinstance(key, str) and _DICOM_JSON_TAG.fullmatch(key) is not None
      for key in record
  )


def naturalize(record: RawDicomRecord) -> NaturalizedDataset:
  """Returns naturalized dataset for any supported record representation.

  Mappings keyed only by eight digit hex tags are decoded as DICOM JSON.
  Other mappings are considered already naturalized and are shallow copied.

  Args:
    record: DICOM P10 bytes, pydicom Dataset, DICOM JSON or naturalized
      dataset.

  Raises:
    DicomInstanceDecodeError: Record cannot be decoded.
  """
  if isinstance(record, (bytes, bytearray, memoryview)):
    return naturalize_p10_bytes(record)
  if isinstance(record, pydicom.Dataset):
    return naturalize_dataset(record)
  if isinstance(record, Mapping):
    if _is_dicom_json(record):
      return naturalize_dicom_json(record)
    return dict(record)
  raise wsi_metadata_errors.DicomInstanceDecodeError(
      f'Unsupported DICOM record type: {type(record).__name__}'
  )
