"""Exception hierarchy shared by the archiver components."""

from __future__ import annotations


class ArchiverError(Exception):
    """Base class for every error raised by the archiver."""


class TransportError(ArchiverError):
    """Network, DNS, TLS or unexpected HTTP status failure."""


class DecodeError(ArchiverError):
    """A response body was not the JSON document we expected."""


class NotFoundError(ArchiverError):
    """The requested resource does not exist (remote 404 or missing blob)."""


class PersistenceError(ArchiverError):
    """The relational store rejected or failed a statement."""


class StorageError(ArchiverError):
    """The blob store could not read or write an object."""


class ConfigurationError(ArchiverError):
    """Configuration is invalid or names a board the remote does not serve."""
