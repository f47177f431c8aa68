"""Exception hierarchy shared by every filelens package.

Callers catch ``FileLensError`` to handle anything raised deliberately by
filelens; the subclasses map onto the failure classes the CLI reports:

  InputValidationError  — a required field is missing; nothing was persisted
  NotFoundError         — project / review lookup missed for this owner
  ServiceUnavailable    — model backend unreachable or timed out
  ModelError            — model backend answered with a non-success status
  PersistenceError      — the store failed; fatal to the request
"""

from __future__ import annotations


class FileLensError(Exception):
    """Base class for all filelens errors."""


class InputValidationError(FileLensError):
    pass


class NotFoundError(FileLensError):
    pass


class ServiceUnavailable(FileLensError):
    pass


class ModelError(FileLensError):
    pass


class PersistenceError(FileLensError):
    pass
