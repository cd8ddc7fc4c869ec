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
"""Pluggable logging for the metadata store and slide grouping.

Grouping warnings carry the DICOM UIDs of the discarded instance as structured
elements, e.g.:

  logger.warning('Volume instance discarded.', {'SOPInstanceUID': uid})

The reference implementation renders structured elements into the message
text of a python logging.Logger.
"""
from __future__ import annotations

import abc
import collections
import copy
import logging
from typing import Any, Mapping, Optional, Union


OptionalStructureElements = Union[Exception, Mapping[str, Any], None]
DEFAULT_WSI_METADATA_PYTHON_LOGGER_NAME = 'wsi-metadata'


def format_structured_message(
    msg: str,
    signature: Mapping[str, Any],
    *args: OptionalStructureElements,
) -> str:
  """Returns msg with structure elements appended as 'key: value' pairs.

  Keys of each mapping are appended in sorted order, followed by the logger
  signature. The last exception passed is appended as EXCEPTION.

  Args:
    msg: Message to log.
    signature: Elements included in every message of a logger.
    *args: Mappings or an exception to append to the message.

  Returns:
    Formatted message.
  """
  elements = collections.OrderedDict()
  found_exception = None
  for element in list(args) + [signature]:
    if not element:
      continue
    if isinstance(element, Mapping):
      for key in sorted(element):
        elements[key] = element[key]
    elif isinstance(element, Exception):
      found_exception = element
  if found_exception is not None:
    elements['EXCEPTION'] = found_exception
  if not elements:
    return msg
  structure = '; '.join(f'{key}: {value}' for key, value in elements.items())
  return f'{msg}; {structure}'


class AbstractLoggingInterface(metaclass=abc.ABCMeta):
  """Logging interface used by the metadata store and grouping algorithms."""

  @abc.abstractmethod
  def log(self, level: int, msg: str, *args: OptionalStructureElements) -> None:
    """Logs message at python logging level.

    Args:
      level: Python logging level, e.g. logging.WARNING.
      msg: Message to log.
      *args: Optional arguments to log as structured logs or additional msg.
    """

  def debug(self, msg: str, *args: OptionalStructureElements) -> None:
    self.log(logging.DEBUG, msg, *args)

  def info(self, msg: str, *args: OptionalStructureElements) -> None:
    self.log(logging.INFO, msg, *args)

  def warning(self, msg: str, *args: OptionalStructureElements) -> None:
    self.log(logging.WARNING, msg, *args)

  def error(self, msg: str, *args: OptionalStructureElements) -> None:
    self.log(logging.ERROR, msg, *args)

  def critical(self, msg: str, *args: OptionalStructureElements) -> None:
    self.log(logging.CRITICAL, msg, *args)


class AbstractLoggingInterfaceFactory(metaclass=abc.ABCMeta):

  @abc.abstractmethod
  def create_logger(
      self, signature: Optional[Mapping[str, Any]] = None
  ) -> AbstractLoggingInterface:
    """Creates an instance of the logger.

    Args:
      signature: Optional signature element to include as structure elements
        in all logs, e.g. the StudyInstanceUID being grouped.
    """


class _PythonLogger(AbstractLoggingInterface):
  """Logs to a python logging.Logger."""

  def __init__(
      self,
      pylogger: logging.Logger,
      signature: Optional[Mapping[str, Any]] = None,
  ):
    self._logger = pylogger
    self._signature = {} if signature is None else copy.copy(signature)

  def log(self, level: int, msg: str, *args: OptionalStructureElements) -> None:
    if not self._logger.isEnabledFor(level):
      return
    self._logger.log(
        level, format_structured_message(msg, self._signature, *args)
    )


class PythonLoggerFactory(AbstractLoggingInterfaceFactory):
  """Factory class to construct loggers backed by python logging."""

  def __init__(
      self,
      name: Optional[str] = DEFAULT_WSI_METADATA_PYTHON_LOGGER_NAME,
  ):
    self._name = name

  def create_logger(
      self, signature: Optional[Mapping[str, Any]] = None
  ) -> _PythonLogger:
    return _PythonLogger(logging.getLogger(self._name), signature)


def create_logger(
    logging_factory: Optional[AbstractLoggingInterfaceFactory] = None,
    signature: Optional[Mapping[str, Any]] = None,
) -> AbstractLoggingInterface:
  """Returns logger built by logging_factory or the python logger factory."""
  if logging_factory is None:
    logging_factory = PythonLoggerFactory()
  return logging_factory.create_logger(signature)
