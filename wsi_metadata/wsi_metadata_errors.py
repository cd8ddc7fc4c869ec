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
"""Error classes for WSI metadata."""
import http.client
from typing import NoReturn

import requests


class WsiMetadataError(Exception):
  pass


class UnsupportedEventError(WsiMetadataError):
  pass


class DicomInstanceDecodeError(WsiMetadataError):
  pass


class MissingDicomUidError(WsiMetadataError):
  pass


class HttpError(WsiMetadataError):
  """DICOMweb request returned a non-success status."""

  def __init__(
      self,
      message: str = '',
      status_code: int = http.client.INTERNAL_SERVER_ERROR,
      reason: str = '',
  ):
    super().__init__(message)
    self._status_code = status_code
    self._reason = reason

  @property
  def status_code(self) -> int:
    return self._status_code

  @property
  def reason(self) -> str:
    return self._reason


class HttpServerError(HttpError):
  """Transient server or throttling error; request is retried with backoff."""


class HttpAuthError(HttpError):
  """Request was not authorized; retried after credentials are re-created."""


class HttpUnexpectedResponseError(HttpError):
  """Any other failure status; not retried."""


class InvalidQidoRsResponseError(HttpError):
  pass


_SERVER_ERROR_STATUS_CODES = frozenset([
    http.client.REQUEST_TIMEOUT,
    http.client.TOO_MANY_REQUESTS,
    http.client.INTERNAL_SERVER_ERROR,
    http.client.SERVICE_UNAVAILABLE,
    http.client.GATEWAY_TIMEOUT,
])
_AUTH_ERROR_STATUS_CODES = frozenset(
    [http.client.UNAUTHORIZED, http.client.FORBIDDEN]
)


def raise_wsi_metadata_http_exception(
    message: str,
    trigger_exception: requests.exceptions.HTTPError,
) -> NoReturn:
  """Raises a WSI metadata HttpError from a requests.HTTPError.

  Args:
    message: Error message.
    trigger_exception: Error raised by requests; a missing response is
      treated as an internal server error.

  Raises:
    HttpServerError: Status is retriable.
    HttpAuthError: Status is 401 or 403.
    HttpUnexpectedResponseError: Any other status.
  """
  response = trigger_exception.response
  if response is None:
    status_code = http.client.INTERNAL_SERVER_ERROR
    reason = ''
  else:
    status_code = response.status_code
    reason = response.reason
  if status_code in _SERVER_ERROR_STATUS_CODES:
    exception_class = HttpServerError
  elif status_code in _AUTH_ERROR_STATUS_CODES:
    exception_class = HttpAuthError
  else:
    exception_class = HttpUnexpectedResponseError
  raise exception_class(message, status_code, reason) from trigger_exception
