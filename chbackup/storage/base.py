"""
Remote storage capability shared by every backend.

A backend exposes a flat key space: keys are '/'-separated strings and the
store has no real directories. Everything above this layer (archive pipeline,
catalog, retention) talks to storage only through RemoteStorage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable


class StorageError(Exception):
    """Raised when a storage operation fails."""

    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.key = key


class StorageConnectionError(StorageError):
    """Raised when the backend is unreachable or rejects credentials."""
    pass


class TransportError(StorageError):
    """Raised when reading, writing or listing fails mid-operation."""
    pass


class NotFoundError(StorageError):
    """Raised when an expected remote object does not exist."""
    pass


@dataclass(frozen=True)
class RemoteFile:
    """A single object as reported by a backend listing or stat."""
    name: str
    size: int
    last_modified: datetime


class RemoteStorage(ABC):
    """
    Capability interface implemented once per backend.

    Sessions are not safe for two simultaneous transfers; open a second
    instance instead.
    """

    @abstractmethod
    def kind(self) -> str:
        """Human readable backend identifier, for diagnostics only."""

    @abstractmethod
    def connect(self):
        """
        Establish or refresh the backend session. Calling it twice is harmless.

        Raises:
            StorageConnectionError: On authentication or network failure
        """

    @abstractmethod
    def walk(self, prefix: str, visit: Callable[[RemoteFile], None]):
        """
        Call visit once per object whose key starts with prefix.

        No ordering is guaranteed. Objects already passed to visit stay
        delivered when the walk fails partway.

        Raises:
            TransportError: If enumeration fails
        """

    @abstractmethod
    def get_file_reader(self, key: str) -> BinaryIO:
        """
        Open a readable byte stream bound to key. Caller closes it.

        Raises:
            NotFoundError: If key does not exist
            TransportError: If the object cannot be opened
        """

    @abstractmethod
    def put_file(self, key: str, stream: BinaryIO):
        """
        Store everything readable from stream under key.

        Raises:
            TransportError: If the stream cannot be consumed or stored
        """

    @abstractmethod
    def stat_file(self, key: str) -> RemoteFile:
        """
        Raises:
            NotFoundError: If key does not exist
        """

    @abstractmethod
    def delete_file(self, key: str):
        """
        Raises:
            NotFoundError: If key does not exist
        """

    def close(self):
        """Release the session. Backends without one need not override."""
        pass

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return f'<{self.__class__.__name__} kind={self.kind()}>'
