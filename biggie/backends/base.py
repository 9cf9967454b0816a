"""
Back-end contract shared by SQL databases, Redis and Kafka
"""
from abc import ABC, abstractmethod
from typing import Any, Optional


class BackendError(Exception):
    """Opening or pinging a back end failed"""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class Backend(ABC):
    """One configured external dependency; every open() hands out a fresh connection"""

    name = "backend"
    error_code = "BACKEND_ERROR"

    @abstractmethod
    def connect(self) -> Any:
        """Raw client connection, not yet verified"""

    @abstractmethod
    def ping(self, resource: Any) -> None:
        ...

    @abstractmethod
    def read(self, resource: Any) -> Any:
        ...

    @abstractmethod
    def write(self, resource: Any, payload: Optional[Any] = None) -> Any:
        ...

    @abstractmethod
    def close(self, resource: Any) -> None:
        ...

    def open(self) -> Any:
        """Connect and ping; failures surface as BackendError with this back end's code"""
        try:
            resource = self.connect()
        except Exception as exc:
            raise BackendError(self.error_code, str(exc)) from exc
        try:
            self.ping(resource)
        except Exception as exc:
            self.close(resource)
            raise BackendError(self.error_code, str(exc)) from exc
        return resource

    def prepare(self, resource: Any) -> None:
        """Hook run once before write traffic starts"""

    def describe(self) -> str:
        return self.name
