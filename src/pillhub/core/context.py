"""
Explicit dependency context for the provisioning core.

Every component receives its collaborators through a ProvisioningContext
instead of reaching for module-level singletons.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from pillhub.core.config import ProvisioningSettings
from pillhub.storage.base import (
    DocumentStore,
    KeyValueStorage,
    RealtimeStore,
    SessionProvider,
)

logger = logging.getLogger(__name__)


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class HapticFeedbackType(Enum):
    """Haptic feedback patterns."""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SELECTION = "selection"


class Announcer(ABC):
    """Accessibility announcer (screen reader output)."""

    @abstractmethod
    def announce(self, message: str) -> None:
        pass


class HapticFeedback(ABC):
    """Haptic feedback emitter."""

    @abstractmethod
    def trigger(self, feedback: HapticFeedbackType) -> None:
        pass


class LoggingAnnouncer(Announcer):
    """Announcer that writes announcements to the log."""

    def announce(self, message: str) -> None:
        logger.info(f"Announcement: {message}")


class NullHaptics(HapticFeedback):
    """Haptic emitter for platforms without a vibration motor."""

    def trigger(self, feedback: HapticFeedbackType) -> None:
        logger.debug(f"Haptic feedback: {feedback.value}")


@dataclass
class ProvisioningContext:
    """Collaborators and settings shared by the provisioning components."""
    session: SessionProvider
    documents: DocumentStore
    realtime: RealtimeStore
    storage: KeyValueStorage
    settings: ProvisioningSettings = field(default_factory=ProvisioningSettings)
    announcer: Announcer = field(default_factory=LoggingAnnouncer)
    haptics: HapticFeedback = field(default_factory=NullHaptics)
    clock: Callable[[], int] = epoch_ms

    def current_user_id(self) -> Optional[str]:
        return self.session.current_user_id()

    def announce(self, message: str) -> None:
        """Best-effort announcement; emitter failures never reach the caller."""
        try:
            self.announcer.announce(message)
        except Exception as e:
            logger.warning(f"Announcer failed: {e}")

    def haptic(self, feedback: HapticFeedbackType) -> None:
        """Best-effort haptic feedback."""
        try:
            self.haptics.trigger(feedback)
        except Exception as e:
            logger.warning(f"Haptic feedback failed: {e}")
