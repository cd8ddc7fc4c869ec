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
"""Retry policies for DICOMweb metadata requests.

Policies are keyword arguments for tenacity.retry, e.g.
@tenacity.retry(**HTTP_SERVER_ERROR_RETRY_CONFIG).
"""
from typing import Any, Dict, Mapping

import tenacity

from wsi_metadata import wsi_metadata_errors


def is_retriable_http_error(exception: BaseException) -> bool:
  return isinstance(exception, wsi_metadata_errors.HttpServerError)


def is_retriable_http_auth_error(exception: BaseException) -> bool:
  return isinstance(exception, wsi_metadata_errors.HttpAuthError)


def _policy(
    predicate, max_attempts: int, max_wait_sec: float = 0
) -> Dict[str, Any]:
  config = dict(
      retry=tenacity.retry_if_exception(predicate),
      stop=tenacity.stop_after_attempt(max_attempts),
      reraise=True,
  )
  if max_wait_sec > 0:
    config['wait'] = tenacity.wait_exponential(multiplier=1, max=max_wait_sec)
  return config


# Auth errors are retried after credentials are refreshed.
HTTP_AUTH_ERROR_RETRY_CONFIG = _policy(is_retriable_http_auth_error, 3)

HTTP_SERVER_ERROR_RETRY_CONFIG = _policy(
    is_retriable_http_error, 5, max_wait_sec=10
)


def enable_config(retry: bool, config: Mapping[str, Any]) -> Mapping[str, Any]:
  """Returns config, limited to a single attempt if retry is False."""
  if retry:
    return config
  config = dict(config)
  config['stop'] = tenacity.stop_after_attempt(1)
  return config
