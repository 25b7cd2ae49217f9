"""
Wizard step handlers.

Each step owns its own validation and reports whether the user may move
on through the controller it is bound to. Steps never advance the wizard
themselves.
"""

import logging
from abc import ABC
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from pillhub.core.context import HapticFeedbackType
from pillhub.provisioning.claim import (
    ClaimValidationResult,
    ClaimValidationState,
    DeviceClaimValidator,
)
from pillhub.provisioning.device_config import (
    ConfigSaveResult,
    DeviceConfigSyncService,
    DeviceConfigUpdate,
)
from pillhub.provisioning.errors import ProgressStoreError, ProvisioningError
from pillhub.provisioning.models import (
    WizardStep,
    hex_to_rgb,
    to_device_alarm_mode,
    ui_intensity_to_device,
)
from pillhub.provisioning.progress import WizardProgressStore

if TYPE_CHECKING:
    from pillhub.provisioning.wizard import WizardController

logger = logging.getLogger(__name__)

CompletionHook = Callable[[str], Awaitable[Any]]


class StepHandler(ABC):
    """Base class for wizard steps."""

    step: WizardStep

    def __init__(self):
        self._controller: Optional["WizardController"] = None
        self.error_message: Optional[str] = None
        self.retry_enabled = False

    def bind(self, controller: "WizardController") -> None:
        self._controller = controller

    @property
    def controller(self) -> "WizardController":
        if self._controller is None:
            raise RuntimeError(f"{type(self).__name__} is not bound to a wizard")
        return self._controller

    @property
    def is_active(self) -> bool:
        return self._controller is not None and self._controller.current_step == self.step

    def allow_proceed(self, value: bool = True) -> None:
        self.controller.set_can_proceed(self.step, value)

    async def on_enter(self) -> None:
        """Called when the wizard enters this step."""
        pass

    async def on_exit(self) -> None:
        """Called when the wizard leaves this step."""
        pass

    def _show_error(self, error: ProvisioningError) -> None:
        self.error_message = error.user_message
        self.retry_enabled = error.retryable
        ctx = self.controller.context
        ctx.haptic(HapticFeedbackType.ERROR)
        ctx.announce(f"Error: {error.user_message}")

    def _clear_error(self) -> None:
        self.error_message = None
        self.retry_enabled = False


class WelcomeStep(StepHandler):
    step = WizardStep.WELCOME

    async def on_enter(self) -> None:
        self.allow_proceed(True)


class DeviceIdStep(StepHandler):
    """Device id entry with debounced availability check."""

    step = WizardStep.DEVICE_ID

    def __init__(self, validator: DeviceClaimValidator):
        super().__init__()
        self._validator = validator
        self.device_id = ""
        self.is_checking = False

    async def on_enter(self) -> None:
        self._validator.add_listener(self._on_validation)
        self.device_id = self.controller.form_data.device_id
        if self.device_id:
            await self._validator.request_validation(self.device_id)

    async def on_exit(self) -> None:
        self._validator.cancel_pending()
        self._validator.remove_listener(self._on_validation)
        self.is_checking = False

    async def change_device_id(self, value: str) -> None:
        """Handle a new input value."""
        self.device_id = value
        self._clear_error()
        self.allow_proceed(False)
        await self._validator.request_validation(value)

    async def wait_idle(self) -> None:
        """Wait until the validation for the latest input has been applied."""
        await self._validator.wait_idle()

    async def _on_validation(self, state: ClaimValidationState) -> None:
        if not self.is_active or state.token != self._validator.latest_token:
            return

        self.is_checking = state.is_checking
        result = state.result
        if result is None:
            return

        if result.ok:
            await self.controller.update_form_data(device_id=result.device_id)
            self.allow_proceed(True)
            self.controller.context.haptic(HapticFeedbackType.SUCCESS)
            self.controller.context.announce("Device ID is valid")
            return

        self.error_message = result.message
        self.allow_proceed(False)
        if result.error is not None:
            # Availability failures get haptic and spoken feedback
            self.retry_enabled = result.error.retryable
            self.controller.context.haptic(HapticFeedbackType.ERROR)
            self.controller.context.announce(result.message or "")


class VerificationStep(StepHandler):
    """Fresh availability check of the chosen device before network setup."""

    step = WizardStep.VERIFY

    def __init__(self, validator: DeviceClaimValidator):
        super().__init__()
        self._validator = validator
        self.is_checking = False
        self.result: Optional[ClaimValidationResult] = None

    async def on_enter(self) -> None:
        await self.verify()

    async def verify(self) -> bool:
        self._clear_error()
        self.allow_proceed(False)
        self.is_checking = True
        try:
            self.result = await self._validator.validate(
                self.controller.form_data.device_id, use_cache=False
            )
        finally:
            self.is_checking = False

        if not self.is_active:
            return False

        if self.result.ok:
            self.allow_proceed(True)
            self.controller.context.haptic(HapticFeedbackType.SUCCESS)
            self.controller.context.announce("Device verified")
            return True

        if self.result.error is not None:
            self._show_error(self.result.error)
        return False


class WiFiConfigStep(StepHandler):
    """Wi-Fi credentials entry and configuration."""

    step = WizardStep.WIFI

    def __init__(self, sync: DeviceConfigSyncService):
        super().__init__()
        self._sync = sync
        self.is_saving = False
        self.warning: Optional[str] = None
        self.connectivity_confirmed = False

    async def on_enter(self) -> None:
        self._clear_error()
        self.warning = None

    async def save(self, ssid: str, password: str) -> bool:
        """Send credentials to the device. Returns True when they were accepted."""
        self._clear_error()
        self.warning = None
        self.allow_proceed(False)
        self.is_saving = True
        try:
            result = await self._sync.configure_wifi(
                self.controller.form_data.device_id, ssid, password
            )
        except ProvisioningError as e:
            logger.error(f"Wi-Fi configuration failed: {e.code}")
            self._show_error(e)
            return False
        finally:
            self.is_saving = False

        await self.controller.update_form_data(wifi_ssid=ssid, wifi_password=password)
        self.warning = result.warning
        self.connectivity_confirmed = result.connectivity_confirmed
        self.retry_enabled = not result.realtime_written
        self.allow_proceed(True)

        ctx = self.controller.context
        if result.connectivity_confirmed:
            ctx.haptic(HapticFeedbackType.SUCCESS)
            ctx.announce("Wi-Fi connection successful")
        else:
            ctx.haptic(HapticFeedbackType.WARNING)
            ctx.announce(result.warning or "Configuration saved. The device will try to connect")
        return True


class PreferencesStep(StepHandler):
    """Alarm and LED preferences. Defaults are valid, so the step is always proceedable."""

    step = WizardStep.PREFERENCES

    def __init__(self, sync: DeviceConfigSyncService):
        super().__init__()
        self._sync = sync
        self.is_saving = False
        self.last_result: Optional[ConfigSaveResult] = None

    async def on_enter(self) -> None:
        self.allow_proceed(True)

    async def update_preferences(self, **changes) -> None:
        await self.controller.update_form_data(**changes)

    def build_update(self) -> DeviceConfigUpdate:
        """Map the wizard's preference values to device values."""
        form = self.controller.form_data
        return DeviceConfigUpdate(
            alarm_mode=to_device_alarm_mode(form.alarm_mode),
            led_intensity=ui_intensity_to_device(form.led_intensity),
            led_color=hex_to_rgb(form.led_color),
        )

    async def save(self) -> Optional[ConfigSaveResult]:
        """Write preferences to the device configuration."""
        self._clear_error()
        self.is_saving = True
        try:
            self.last_result = await self._sync.save_device_config(
                self.controller.form_data.device_id, self.build_update()
            )
        except ProvisioningError as e:
            logger.error(f"Saving preferences failed: {e.code}")
            self._show_error(e)
            return None
        finally:
            self.is_saving = False

        self.controller.context.haptic(HapticFeedbackType.SUCCESS)
        self.controller.context.announce("Preferences saved successfully")
        return self.last_result


class CompletionStep(StepHandler):
    """Final step: clears saved progress and marks onboarding complete."""

    step = WizardStep.COMPLETE

    def __init__(
        self,
        progress_store: WizardProgressStore,
        on_complete: Optional[CompletionHook] = None,
    ):
        super().__init__()
        self._progress_store = progress_store
        self._on_complete = on_complete
        self.is_completing = False

    async def on_enter(self) -> None:
        await self.complete()

    async def complete(self) -> bool:
        self._clear_error()
        self.allow_proceed(False)
        self.is_completing = True
        ctx = self.controller.context
        try:
            await self._progress_store.clear()
            if self._on_complete is not None:
                await self._on_complete(ctx.current_user_id() or "")
        except ProgressStoreError as e:
            logger.error(f"Completing setup failed: {e}")
            self._fail("Could not finish setup. Please try again")
            return False
        except Exception as e:
            logger.error(f"Completing onboarding failed: {e}")
            code = getattr(e, "code", None)
            if code == "permission-denied":
                self._fail("You do not have permission to complete setup")
            elif code == "unavailable":
                self._fail("Service unavailable. Check your internet connection")
            else:
                self._fail("Error completing setup")
            return False
        finally:
            self.is_completing = False

        self.allow_proceed(True)
        ctx.haptic(HapticFeedbackType.SUCCESS)
        ctx.announce("Setup complete. Your device is ready to use")
        return True

    def _fail(self, message: str) -> None:
        self.error_message = message
        self.retry_enabled = True
        self.controller.context.haptic(HapticFeedbackType.ERROR)
