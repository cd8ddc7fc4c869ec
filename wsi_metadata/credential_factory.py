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
"""Credentials used to authorize DICOMweb metadata requests."""
import abc
import copy
import hashlib
import json
import os
import threading
from typing import Any, Dict, List, Mapping, Optional, Union

import cachetools
import google.auth
import google.auth.credentials
import google.auth.transport.requests
from google.oauth2 import service_account

_SCOPES = [
    'https://www.googleapis.com/auth/cloud-platform',
    'https://www.googleapis.com/auth/cloud-healthcare',
]
_APPLICATION_DEFAULT_CREDENTIALS = 'application_default_credentials'
_ONE_HOUR_IN_SECONDS = 60 * 60


class _CredentialCache:
  """Credentials shared by factories that read the same credential source."""

  def __init__(self):
    self.lock = threading.Lock()
    self.credentials = cachetools.TTLCache(
        maxsize=100, ttl=_ONE_HOUR_IN_SECONDS
    )


_cache = _CredentialCache()


def _reset_cache_after_fork() -> None:
  global _cache
  _cache = _CredentialCache()


class AbstractCredentialFactory(metaclass=abc.ABCMeta):
  """Creates the credentials used to read DICOMweb metadata."""

  @abc.abstractmethod
  def get_credentials(self) -> google.auth.credentials.Credentials:
    """Returns credentials to use to access DICOMweb service."""

  def credential_source_hash(self) -> str:
    """Returns hash identifying credential source; empty if not cacheable."""
    return ''


def refresh_credentials(
    auth_credentials: google.auth.credentials.Credentials,
    credential_factory: Optional[AbstractCredentialFactory] = None,
) -> google.auth.credentials.Credentials:
  """Refreshes credentials if invalid and caches refreshed credentials."""
  if auth_credentials.valid:
    return auth_credentials
  with _cache.lock:
    auth_credentials.refresh(google.auth.transport.requests.Request())
    source_hash = (
        credential_factory.credential_source_hash()
        if credential_factory is not None
        else ''
    )
    if source_hash:
      _cache.credentials[source_hash] = auth_credentials
  return auth_credentials


def _load_service_account_json(
    json_param: Union[Mapping[str, Any], str, bytes, os.PathLike[Any], None],
) -> Dict[str, Any]:
  if not json_param:
    return {}
  if isinstance(json_param, (str, bytes, os.PathLike)):
    with open(json_param, 'rt') as infile:
      return json.load(infile)
  return dict(copy.copy(json_param))


class CredentialFactory(AbstractCredentialFactory):
  """Application default or service account credentials."""

  def __init__(
      self,
      json_param: Optional[
          Union[Mapping[str, Any], str, bytes, os.PathLike[Any]]
      ] = None,
      scopes: Optional[List[str]] = None,
  ):
    """Constructor.

    Args:
      json_param: Path to, or loaded contents of, service account JSON. If
        undefined, application default credentials are used.
      scopes: Credential scopes, defaults to cloud-platform and
        cloud-healthcare.
    """
    self._json = _load_service_account_json(json_param)
    if self._json:
      self._credential_source_hash = hashlib.sha3_512(
          json.dumps(self._json, sort_keys=True).encode('utf-8')
      ).hexdigest()
    else:
      self._credential_source_hash = _APPLICATION_DEFAULT_CREDENTIALS
    self._scopes = list(_SCOPES if scopes is None else scopes)

  def _create_credentials(self) -> google.auth.credentials.Credentials:
    if self._json:
      return service_account.Credentials.from_service_account_info(
          self._json, scopes=self._scopes
      )
    return google.auth.default(scopes=self._scopes)[0]

  def get_credentials(self) -> google.auth.credentials.Credentials:
    with _cache.lock:
      credentials = _cache.credentials.get(self._credential_source_hash)
      if credentials is None:
        credentials = self._create_credentials()
        _cache.credentials[self._credential_source_hash] = credentials
    return refresh_credentials(credentials, self)

  def credential_source_hash(self) -> str:
    return self._credential_source_hash


class StaticCredentials(google.auth.credentials.Credentials):
  """Credentials that never expire or refresh.

  Applies a bearer token to request headers if one is defined; otherwise
  requests are sent without an authorization header.
  """

  def __init__(self, token: Optional[str] = None):
    super().__init__()
    self.token = token

  @property
  def expired(self) -> bool:
    return False

  @property
  def valid(self) -> bool:
    return True

  def refresh(self, request: google.auth.transport.Request) -> None:
    return

  def apply(self, headers: Dict[Any, Any], token: Optional[str] = None) -> None:
    token = token or self.token
    if token:
      headers['authorization'] = f'Bearer {token}'


class TokenPassthroughCredentialFactory(AbstractCredentialFactory):
  """Authorizes requests with a caller provided bearer token."""

  def __init__(self, bearer_token: str):
    self._credentials = StaticCredentials(bearer_token)

  def get_credentials(self) -> google.auth.credentials.Credentials:
    return self._credentials


class NoAuthCredentialsFactory(AbstractCredentialFactory):
  """Sends requests without authorization, e.g. to a local DICOMweb server."""

  def __init__(self):
    self._credentials = StaticCredentials()

  def get_credentials(self) -> google.auth.credentials.Credentials:
    return self._credentials


# Forked children start with an unlocked, empty credential cache.
os.register_at_fork(after_in_child=_reset_cache_after_fork)
