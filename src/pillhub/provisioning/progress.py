"""
Wizard progress persistence.

Saves a single resumable snapshot of the provisioning wizard to local
storage so the user can pick up where they left off. Snapshots belong to
the user who saved them and expire after a fixed number of days.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from pillhub.provisioning.errors import ProgressStoreError
from pillhub.provisioning.models import DeviceProvisioningFormData
from pillhub.security.encryption import EncryptionService
from pillhub.storage.base import KeyValueStorage

logger = logging.getLogger(__name__)

WIZARD_STORAGE_KEY = "@device_provisioning_wizard"
WIZARD_TIMESTAMP_KEY = "@device_provisioning_wizard_timestamp"

DAY_MS = 24 * 60 * 60 * 1000
HOUR_MS = 60 * 60 * 1000

# Associated data binding the sealed password to this slot
_PASSWORD_AAD = WIZARD_STORAGE_KEY.encode("utf-8")


@dataclass
class WizardProgress:
    """Snapshot of an in-progress wizard."""
    current_step_index: int
    total_steps: int
    form_data: DeviceProvisioningFormData = field(default_factory=DeviceProvisioningFormData)
    owner_user_id: str = ""
    saved_at_epoch_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentStepIndex": self.current_step_index,
            "totalSteps": self.total_steps,
            "formData": self.form_data.to_dict(),
            "ownerUserId": self.owner_user_id,
            "savedAtEpochMs": self.saved_at_epoch_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WizardProgress":
        return cls(
            current_step_index=int(data["currentStepIndex"]),
            total_steps=int(data["totalSteps"]),
            form_data=DeviceProvisioningFormData.from_dict(data.get("formData") or {}),
            owner_user_id=data["ownerUserId"],
            saved_at_epoch_ms=int(data["savedAtEpochMs"]),
        )


class WizardProgressStore:
    """
    Single-slot store for wizard progress.

    When a cipher is configured, the Wi-Fi password is sealed before the
    snapshot reaches storage and unsealed on restore.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Callable[[], int],
        ttl_days: int = 7,
        cipher: Optional[EncryptionService] = None,
    ):
        self._storage = storage
        self._clock = clock
        self._ttl_ms = ttl_days * DAY_MS
        self._cipher = cipher

    def _seal(self, progress: WizardProgress) -> Dict[str, Any]:
        payload = progress.to_dict()
        form = payload["formData"]
        password = form.pop("wifiPassword", "")
        if self._cipher is not None:
            if password:
                form["wifiPasswordEnc"] = self._cipher.encrypt_to_base64(password, _PASSWORD_AAD)
        else:
            form["wifiPassword"] = password
        return payload

    def _unseal(self, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValueError("snapshot is not an object")
        form = payload.get("formData")
        if not isinstance(form, dict):
            raise ValueError("snapshot formData is not an object")
        sealed = form.pop("wifiPasswordEnc", None)
        if sealed is None:
            return payload

        if self._cipher is None:
            logger.warning("Snapshot holds a sealed Wi-Fi password but no key is configured")
            return payload

        try:
            form["wifiPassword"] = self._cipher.decrypt_from_base64(sealed, _PASSWORD_AAD).decode("utf-8")
        except ValueError as e:
            logger.warning(f"Dropping unreadable Wi-Fi password from snapshot: {e}")
        return payload

    async def save(self, progress: WizardProgress) -> None:
        """
        Persist the snapshot, replacing any previous one.

        Raises:
            ProgressStoreError: If local storage rejects the write
        """
        try:
            data = json.dumps(self._seal(progress))
            await self._storage.set_item(WIZARD_STORAGE_KEY, data)
            await self._storage.set_item(WIZARD_TIMESTAMP_KEY, str(progress.saved_at_epoch_ms))
        except Exception as e:
            logger.error(f"Error saving wizard progress: {e}")
            raise ProgressStoreError("Failed to save wizard progress") from e

        logger.info(
            f"Wizard progress saved: step {progress.current_step_index + 1}/{progress.total_steps}"
        )

    async def restore(self, user_id: Optional[str]) -> Optional[WizardProgress]:
        """
        Load the snapshot for `user_id`.

        Returns None when there is no snapshot. A snapshot owned by a
        different user, older than the TTL, or unreadable is cleared.
        """
        try:
            raw = await self._storage.get_item(WIZARD_STORAGE_KEY)
        except Exception as e:
            logger.error(f"Error reading wizard progress: {e}")
            return None

        if not raw:
            logger.debug("No saved wizard progress found")
            return None

        try:
            progress = WizardProgress.from_dict(self._unseal(json.loads(raw)))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding corrupt wizard progress: {e}")
            await self._discard()
            return None

        if not user_id or progress.owner_user_id != user_id:
            logger.info("Saved wizard progress belongs to a different user, clearing")
            await self._discard()
            return None

        age = self._clock() - progress.saved_at_epoch_ms
        if age > self._ttl_ms:
            logger.info("Saved wizard progress expired, clearing")
            await self._discard()
            return None

        logger.info(
            f"Wizard progress restored: step {progress.current_step_index + 1}/"
            f"{progress.total_steps}, age {round(age / HOUR_MS)} hours"
        )
        return progress

    async def clear(self) -> None:
        """
        Remove the snapshot.

        Raises:
            ProgressStoreError: If local storage rejects the removal
        """
        try:
            await self._storage.multi_remove([WIZARD_STORAGE_KEY, WIZARD_TIMESTAMP_KEY])
        except Exception as e:
            logger.error(f"Error clearing wizard progress: {e}")
            raise ProgressStoreError("Failed to clear wizard progress") from e
        logger.info("Wizard progress cleared")

    async def has_progress(self, user_id: Optional[str]) -> bool:
        """Whether a valid snapshot exists for `user_id`."""
        return await self.restore(user_id) is not None

    async def get_progress_age(self) -> Optional[int]:
        """Age of the stored snapshot in milliseconds, or None if there is none."""
        try:
            raw = await self._storage.get_item(WIZARD_TIMESTAMP_KEY)
        except Exception as e:
            logger.error(f"Error reading wizard progress age: {e}")
            return None

        if not raw:
            return None
        try:
            return self._clock() - int(raw)
        except ValueError:
            logger.warning(f"Invalid wizard progress timestamp: {raw!r}")
            return None

    async def _discard(self) -> None:
        try:
            await self.clear()
        except ProgressStoreError:
            logger.warning("Could not discard stale wizard progress")
