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
"""Reads whole slide imaging metadata from a DICOMweb server.

Series summaries are read with QIDO-RS and instance metadata with WADO-RS
series metadata requests. Responses are naturalized before they are returned
so they can be passed directly to DicomMetadataStore.
"""
import copy
import http.client
import json
import threading
from typing import Any, Dict, List, Mapping, MutableMapping, Optional
import urllib.parse

import google.auth.credentials
import requests
import tenacity

from wsi_metadata import credential_factory as credential_factory_module
from wsi_metadata import dicom_metadata_store
from wsi_metadata import dicom_naturalizer
from wsi_metadata import error_retry_util
from wsi_metadata import series_metadata_bundle
from wsi_metadata import wsi_metadata_errors
from wsi_metadata import wsi_metadata_logging_factory

DEFAULT_HTTP_TIMEOUT_SEC = 3600
SLIDE_MICROSCOPY_MODALITY = 'SM'
_DICOM_JSON_ACCEPT = {'Accept': 'application/dicom+json'}


@tenacity.retry(**error_retry_util.HTTP_SERVER_ERROR_RETRY_CONFIG)
def _invoke_http_request(
    query: str,
    credentials: google.auth.credentials.Credentials,
    uri: str,
    headers: Mapping[str, Any],
    timeout: Optional[int],
) -> requests.Response:
  """Invokes a DICOMweb GET request.

  Args:
    query: Name of request type used in error messages.
    credentials: Credentials to use for the request.
    uri: URI of Http request.
    headers: Http request headers.
    timeout: Http timeout in seconds.

  Returns:
    Http response.

  Raises:
    HttpError: Response status was not success.
  """
  headers = dict(headers)
  credentials.apply(headers)
  try:
    response = requests.get(uri, headers=headers, timeout=timeout)
    response.raise_for_status()
    return response
  except requests.exceptions.HTTPError as exp:
    status_code = exp.response.status_code
    content = exp.response.text
    wsi_metadata_errors.raise_wsi_metadata_http_exception(
        f'{query} error. Response Status: {status_code},\nURL:'
        f' {uri},\nContent: {content}.',
        exp,
    )


def _parse_json_list(
    query: str, uri: str, response: requests.Response
) -> List[Dict[str, Any]]:
  """Returns DICOM JSON datasets in response; empty list if no content."""
  if response.status_code == http.client.NO_CONTENT:
    return []
  try:
    result = json.loads(response.text)
  except json.JSONDecodeError as exp:
    raise wsi_metadata_errors.InvalidQidoRsResponseError(
        f'{query} returned invalid JSON. URL: {uri}.',
        response.status_code,
    ) from exp
  if not isinstance(result, list):
    raise wsi_metadata_errors.InvalidQidoRsResponseError(
        f'{query} did not return a list of datasets. URL: {uri}.',
        response.status_code,
    )
  return result


class DicomWebMetadataSource:
  """Reads series summaries and instance metadata from a DICOMweb service."""

  def __init__(
      self,
      dicomweb_url: str,
      credential_factory: Optional[
          credential_factory_module.AbstractCredentialFactory
      ] = None,
      timeout: Optional[int] = DEFAULT_HTTP_TIMEOUT_SEC,
  ):
    """Constructor.

    Args:
      dicomweb_url: Base URL of DICOMweb service, e.g.
        https://healthcare.googleapis.com/v1/projects/.../dicomWeb
      credential_factory: Factory that creates DICOMweb credentials; requests
        are not authorized if undefined.
      timeout: Http timeout in seconds.
    """
    self._dicomweb_url = dicomweb_url.rstrip('/')
    if credential_factory is None:
      credential_factory = credential_factory_module.NoAuthCredentialsFactory()
    self._credential_factory = credential_factory
    self._timeout = timeout
    self._lock = threading.RLock()
    self._credentials = None

  def __getstate__(self) -> MutableMapping[str, Any]:
    state = copy.copy(self.__dict__)
    del state['_credentials']
    del state['_lock']
    return state

  def __setstate__(self, dct: MutableMapping[str, Any]) -> None:
    self.__dict__ = dct
    self._lock = threading.RLock()
    self._credentials = None

  @property
  def dicomweb_url(self) -> str:
    return self._dicomweb_url

  @property
  def credential_factory(
      self,
  ) -> credential_factory_module.AbstractCredentialFactory:
    return self._credential_factory

  def credentials(self) -> google.auth.credentials.Credentials:
    """Returns credentials used to access DICOMweb service."""
    with self._lock:
      if self._credentials is None:
        self._credentials = self._credential_factory.get_credentials()
      self._credentials = credential_factory_module.refresh_credentials(
          self._credentials, self._credential_factory
      )
      return self._credentials

  def _get_dicom_json(self, query: str, uri: str) -> List[Dict[str, Any]]:
    try:
      response = _invoke_http_request(
          query, self.credentials(), uri, _DICOM_JSON_ACCEPT, self._timeout
      )
    except wsi_metadata_errors.HttpAuthError:
      # Credentials are re-created by the next attempt.
      with self._lock:
        self._credentials = None
      raise
    return _parse_json_list(query, uri, response)

  def _study_url(self, study_instance_uid: str) -> str:
    return f'{self._dicomweb_url}/studies/{study_instance_uid}'

  @tenacity.retry(**error_retry_util.HTTP_AUTH_ERROR_RETRY_CONFIG)
  def search_for_series(
      self,
      study_instance_uid: str,
      modality: Optional[str] = SLIDE_MICROSCOPY_MODALITY,
  ) -> List[dicom_naturalizer.NaturalizedDataset]:
    """Returns naturalized summaries of the series in a study.

    Args:
      study_instance_uid: StudyInstanceUID of study to search.
      modality: Modality of series to return; all series if undefined.

    Raises:
      HttpError: Search request failed.
      InvalidQidoRsResponseError: Response is not a list of datasets.
      DicomInstanceDecodeError: Response dataset is not DICOM JSON.
    """
    uri = f'{self._study_url(study_instance_uid)}/series'
    if modality:
      uri = f'{uri}?{urllib.parse.urlencode({"Modality": modality})}'
    return [
        dicom_naturalizer.naturalize_dicom_json(dicom_json)
        for dicom_json in self._get_dicom_json('QidoRs', uri)
    ]

  @tenacity.retry(**error_retry_util.HTTP_AUTH_ERROR_RETRY_CONFIG)
  def retrieve_series_metadata(
      self, study_instance_uid: str, series_instance_uid: str
  ) -> List[dicom_naturalizer.NaturalizedDataset]:
    """Returns naturalized metadata of every instance in a series.

    Args:
      study_instance_uid: StudyInstanceUID of series.
      series_instance_uid: SeriesInstanceUID of series.

    Raises:
      HttpError: Metadata request failed.
      InvalidQidoRsResponseError: Response is not a list of datasets.
      DicomInstanceDecodeError: Response dataset is not DICOM JSON.
    """
    uri = (
        f'{self._study_url(study_instance_uid)}/series/'
        f'{series_instance_uid}/metadata'
    )
    return [
        dicom_naturalizer.naturalize_dicom_json(dicom_json)
        for dicom_json in self._get_dicom_json('WadoRsMetadata', uri)
    ]


def _is_wsi_record(record: Mapping[str, Any]) -> bool:
  return (
      record.get('SOPClassUID')
      == series_metadata_bundle.VL_WHOLE_SLIDE_MICROSCOPY_IMAGE_SOP_CLASS_UID
  )


def load_study(
    source: DicomWebMetadataSource,
    store: dicom_metadata_store.DicomMetadataStore,
    study_instance_uid: str,
    logging_factory: Optional[
        wsi_metadata_logging_factory.AbstractLoggingInterfaceFactory
    ] = None,
) -> List[series_metadata_bundle.SeriesMetadataBundle]:
  """Loads the slide microscopy series of a study into a metadata store.

  Series summaries are added first, followed by the VL whole slide microscopy
  instances of each series. Store subscribers therefore observe SERIES_ADDED
  followed by one INSTANCES_ADDED per series with whole slide instances.

  Args:
    source: DICOMweb service to read metadata from.
    store: Store metadata is added to.
    study_instance_uid: StudyInstanceUID of study to load.
    logging_factory: Factory used to create logger.

  Returns:
    Per series metadata bundles of the study.

  Raises:
    HttpError: DICOMweb request failed.
  """
  logger = wsi_metadata_logging_factory.create_logger(logging_factory)
  summaries = source.search_for_series(study_instance_uid)
  if not summaries:
    logger.warning(
        'Study has no slide microscopy series.',
        {'StudyInstanceUID': study_instance_uid, 'url': source.dicomweb_url},
    )
    return series_metadata_bundle.create_series_bundles(
        store, study_instance_uid
    )
  store.add_series_metadata(summaries)
  for summary in summaries:
    series_instance_uid = summary['SeriesInstanceUID']
    records = source.retrieve_series_metadata(
        study_instance_uid, series_instance_uid
    )
    wsi_records = [record for record in records if _is_wsi_record(record)]
    logger.info(
        'Retrieved series metadata.',
        {
            'StudyInstanceUID': study_instance_uid,
            'SeriesInstanceUID': series_instance_uid,
            'instances': len(records),
            'wsi_instances': len(wsi_records),
        },
    )
    store.add_instances(wsi_records)
  return series_metadata_bundle.create_series_bundles(store, study_instance_uid)
