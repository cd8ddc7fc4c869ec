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
"""Place for common constants and methods across tests for WSI metadata."""
import io
import json
import os
from typing import Any, Dict, List, Optional

import pydicom

_PYDICOM_MAJOR_VERSION = int((pydicom.__version__).split('.')[0])

VL_WHOLE_SLIDE_MICROSCOPY_IMAGE_SOP_CLASS_UID = '1.2.840.10008.5.1.4.1.1.77.1.6'

TEST_DICOMWEB_URL = 'https://dicomweb.example.com/dicomWeb'

# Test DICOM object UIDs.
TEST_STUDY_UID_1 = '1.22.333.101'
TEST_STUDY_UID_2 = '1.22.333.102'
TEST_SERIES_UID_1 = '1.22.333.201'
TEST_SERIES_UID_2 = '1.22.333.202'
TEST_SERIES_UID_3 = '1.22.333.203'
TEST_INSTANCE_UID_1 = '1.22.333.301'
TEST_INSTANCE_UID_2 = '1.22.333.302'
TEST_INSTANCE_UID_3 = '1.22.333.303'
TEST_FRAME_OF_REFERENCE_UID_1 = '1.22.333.401'
TEST_FRAME_OF_REFERENCE_UID_2 = '1.22.333.402'
TEST_CONTAINER_IDENTIFIER_1 = '1'
TEST_CONTAINER_IDENTIFIER_2 = '2'


def _test_file_path(*args: str) -> str:
  base_path = [os.path.dirname(os.path.dirname(__file__))]
  base_path.extend(args)
  return os.path.join(*base_path)


def testdata_path(*args: str) -> str:
  return _test_file_path('testdata', *args)


def series_summary_json_path() -> str:
  return testdata_path('series_summary.json')


def series_metadata_json_path() -> str:
  return testdata_path('series_metadata.json')


def load_json(path: str) -> Any:
  with open(path, 'rt') as json_file:
    return json.load(json_file)


def create_naturalized_instance(
    sop_instance_uid: str,
    series_instance_uid: str = TEST_SERIES_UID_1,
    study_instance_uid: str = TEST_STUDY_UID_1,
    image_flavor: str = 'VOLUME',
    samples_per_pixel: int = 3,
    photometric_interpretation: Optional[str] = None,
    frame_of_reference_uid: str = TEST_FRAME_OF_REFERENCE_UID_1,
    container_identifier: str = TEST_CONTAINER_IDENTIFIER_1,
    optical_path_identifiers: Optional[List[str]] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
  """Returns naturalized VL whole slide microscopy instance metadata.

  Args:
    sop_instance_uid: SOPInstanceUID of instance.
    series_instance_uid: SeriesInstanceUID of instance.
    study_instance_uid: StudyInstanceUID of instance.
    image_flavor: Third value of ImageType, e.g. VOLUME, LABEL or OVERVIEW.
    samples_per_pixel: 3 for RGB, 1 for monochrome channels.
    photometric_interpretation: Defaults to RGB or MONOCHROME2 based on
      samples_per_pixel.
    frame_of_reference_uid: FrameOfReferenceUID of instance.
    container_identifier: ContainerIdentifier of instance.
    optical_path_identifiers: Identifiers in OpticalPathSequence, default
      ['1'].
    **kwargs: Additional keyword attributes.
  """
  if photometric_interpretation is None:
    photometric_interpretation = 'RGB' if samples_per_pixel == 3 else (
        'MONOCHROME2'
    )
  if optical_path_identifiers is None:
    optical_path_identifiers = ['1']
  instance = {
      'StudyInstanceUID': study_instance_uid,
      'SeriesInstanceUID': series_instance_uid,
      'SOPInstanceUID': sop_instance_uid,
      'SOPClassUID': VL_WHOLE_SLIDE_MICROSCOPY_IMAGE_SOP_CLASS_UID,
      'Modality': 'SM',
      'ImageType': ['ORIGINAL', 'PRIMARY', image_flavor, 'NONE'],
      'Rows': 256,
      'Columns': 256,
      'SamplesPerPixel': samples_per_pixel,
      'PhotometricInterpretation': photometric_interpretation,
      'FrameOfReferenceUID': frame_of_reference_uid,
      'ContainerIdentifier': container_identifier,
      'OpticalPathSequence': [
          {'OpticalPathIdentifier': identifier}
          for identifier in optical_path_identifiers
      ],
  }
  instance.update(kwargs)
  return instance


def create_test_dicom_instance(
    study_uid: str,
    series_uid: str,
    instance_uid: str,
    accession_number: str = '',
    sop_class_uid: str = VL_WHOLE_SLIDE_MICROSCOPY_IMAGE_SOP_CLASS_UID,
) -> pydicom.FileDataset:
  """Creates pydicom instance for testing."""
  file_meta = pydicom.dataset.FileMetaDataset()
  file_meta.TransferSyntaxUID = '1.2.840.10008.1.2.1'
  file_meta.MediaStorageSOPClassUID = sop_class_uid
  file_meta.MediaStorageSOPInstanceUID = instance_uid
  file_meta.ImplementationClassUID = '1.2.3'
  test_instance = pydicom.FileDataset(
      '', {}, file_meta=file_meta, preamble=b'\0' * 128
  )
  test_instance.StudyInstanceUID = study_uid
  test_instance.SeriesInstanceUID = series_uid
  test_instance.SOPInstanceUID = instance_uid
  test_instance.SOPClassUID = sop_class_uid
  test_instance.Modality = 'SM'
  test_instance.PatientName = 'Doe^Jane'
  test_instance.SeriesNumber = 4
  test_instance.NumberOfFrames = 1
  test_instance.BitsAllocated = 8
  test_instance.InstanceNumber = 1
  test_instance.Columns = 12
  test_instance.Rows = 1
  test_instance.SamplesPerPixel = 1
  test_instance.PhotometricInterpretation = 'MONOCHROME2'
  test_instance.ImagedVolumeWidth = 1.5
  test_instance.ImageType = ['ORIGINAL', 'PRIMARY', 'VOLUME']
  test_instance.FrameOfReferenceUID = TEST_FRAME_OF_REFERENCE_UID_1
  test_instance.ContainerIdentifier = TEST_CONTAINER_IDENTIFIER_1
  optical_path = pydicom.Dataset()
  optical_path.OpticalPathIdentifier = '1'
  test_instance.OpticalPathSequence = [optical_path]
  test_instance.PixelData = b'abc123abc123'
  if accession_number:
    test_instance.AccessionNumber = accession_number
  if _PYDICOM_MAJOR_VERSION <= 2:
    test_instance.is_implicit_VR = False
    test_instance.is_little_endian = True
  return test_instance


def dicom_instance_bytes(dcm: pydicom.FileDataset) -> bytes:
  """Returns DICOM Part 10 bytes of a test instance."""
  with io.BytesIO() as output:
    if _PYDICOM_MAJOR_VERSION <= 2:
      dcm.save_as(output)
    else:
      # pylint: disable=unexpected-keyword-arg
      dcm.save_as(output, little_endian=True, implicit_vr=False)
      # pylint: enable=unexpected-keyword-arg
    return output.getvalue()
