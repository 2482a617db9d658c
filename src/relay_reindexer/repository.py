"""Storage for the current monitoring session."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .models import MonitoringSession


class SessionRepository(ABC):
    """Holds at most one monitoring session."""

    @abstractmethod
    def load(self) -> Optional[MonitoringSession]:
        raise NotImplementedError

    @abstractmethod
    def save(self, session: MonitoringSession) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class InMemorySessionRepository(SessionRepository):
    """Keeps the session for the lifetime of the process."""

    def __init__(self) -> None:
        self._session: Optional[MonitoringSession] = None

    def load(self) -> Optional[MonitoringSession]:
        return self._session

    def save(self, session: MonitoringSession) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None
