"""
Device provisioning wizard controller.

Finite-state machine driving the provisioning steps:

    WELCOME -> DEVICE_ID -> VERIFY -> WIFI -> PREFERENCES -> COMPLETE

The controller owns the form data and per-step validity. Steps report
validity through set_can_proceed(); the controller only advances when
the active step allows it. Every transition saves a progress snapshot so
the user can resume later.
"""

import asyncio
import dataclasses
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pillhub.core.context import ProvisioningContext
from pillhub.provisioning.cache import ValidationCache
from pillhub.provisioning.claim import DeviceClaimValidator
from pillhub.provisioning.device_config import DeviceConfigSyncService
from pillhub.provisioning.errors import ProgressStoreError
from pillhub.provisioning.models import DeviceProvisioningFormData, WizardStep
from pillhub.provisioning.progress import WizardProgress, WizardProgressStore
from pillhub.provisioning.steps import (
    CompletionHook,
    CompletionStep,
    DeviceIdStep,
    PreferencesStep,
    StepHandler,
    VerificationStep,
    WelcomeStep,
    WiFiConfigStep,
)
from pillhub.security.encryption import EncryptionService

logger = logging.getLogger(__name__)

STEP_ORDER: List[WizardStep] = list(WizardStep)


class ExitDecision(Enum):
    """Outcome of an exit request."""
    CONFIRMATION_REQUIRED = "confirmation_required"
    EXITED = "exited"


class WizardController:
    """
    Drives the provisioning wizard.

    Only one step is active at a time; next() and back() are serialized.
    On mount a saved snapshot is surfaced to the caller rather than resumed
    automatically, so the caller can offer resume or discard.
    """

    def __init__(
        self,
        context: ProvisioningContext,
        progress_store: WizardProgressStore,
        steps: Optional[List[StepHandler]] = None,
    ):
        self._context = context
        self._progress_store = progress_store
        self._handlers: Dict[WizardStep, StepHandler] = {}
        for handler in steps or []:
            handler.bind(self)
            self._handlers[handler.step] = handler

        self._current = WizardStep.WELCOME
        self._can_proceed: Dict[WizardStep, bool] = {step: False for step in STEP_ORDER}
        self._form_data = DeviceProvisioningFormData()
        self._lock = asyncio.Lock()
        self._entered = False

        self.pending_progress: Optional[WizardProgress] = None
        self.exit_confirmation_pending = False
        self.exited = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def context(self) -> ProvisioningContext:
        return self._context

    @property
    def current_step(self) -> WizardStep:
        return self._current

    @property
    def current_index(self) -> int:
        return STEP_ORDER.index(self._current)

    @property
    def total_steps(self) -> int:
        return len(STEP_ORDER)

    @property
    def form_data(self) -> DeviceProvisioningFormData:
        return self._form_data

    @property
    def can_proceed(self) -> bool:
        return self._can_proceed[self._current]

    @property
    def can_go_back(self) -> bool:
        return self._current not in (WizardStep.WELCOME, WizardStep.COMPLETE)

    @property
    def is_complete(self) -> bool:
        return self._current == WizardStep.COMPLETE and self.can_proceed

    def handler(self, step: WizardStep) -> Optional[StepHandler]:
        return self._handlers.get(step)

    def set_can_proceed(self, step: WizardStep, value: bool) -> None:
        """Record a step's validity. Ignored unless `step` is the active step."""
        if step != self._current:
            logger.debug(f"Ignoring can_proceed={value} from inactive step {step.name}")
            return
        self._can_proceed[step] = value

    async def update_form_data(self, **changes: Any) -> None:
        """
        Apply field changes to the form data and save a snapshot.

        Raises:
            ValueError: If a changed field is out of range
            TypeError: If a field name is unknown
        """
        self._form_data = dataclasses.replace(self._form_data, **changes)
        await self._save_snapshot()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def mount(self) -> Optional[WizardProgress]:
        """
        Start the wizard.

        Returns:
            A saved snapshot awaiting a resume/discard decision, or None if
            the wizard started fresh at WELCOME
        """
        user_id = self._context.current_user_id()
        progress = await self._progress_store.restore(user_id) if user_id else None
        if progress is not None:
            logger.info(f"Found saved progress at step {progress.current_step_index + 1}")
            self.pending_progress = progress
            return progress

        await self._enter(WizardStep.WELCOME)
        return None

    async def resume(self, progress: WizardProgress) -> None:
        """Jump to the saved step with the saved form data."""
        index = max(0, min(progress.current_step_index, len(STEP_ORDER) - 1))
        async with self._lock:
            self.pending_progress = None
            await self._leave_active()
            self._form_data = progress.form_data
            logger.info(f"Resuming wizard at step {index + 1}")
            await self._enter(STEP_ORDER[index])

    async def discard(self) -> None:
        """Clear saved progress and start over at WELCOME."""
        async with self._lock:
            self.pending_progress = None
            try:
                await self._progress_store.clear()
            except ProgressStoreError as e:
                logger.error(f"Could not clear saved progress: {e}")
            await self._leave_active()
            self._form_data = DeviceProvisioningFormData()
            await self._enter(WizardStep.WELCOME)

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    async def next(self) -> bool:
        """Advance one step if the active step allows it."""
        async with self._lock:
            if self._current == WizardStep.COMPLETE:
                return False
            if not self._can_proceed[self._current]:
                logger.debug(f"Cannot proceed from {self._current.name}")
                return False
            await self._transition(STEP_ORDER[self.current_index + 1])
            return True

    async def back(self) -> bool:
        """Go back one step. Not available on WELCOME or COMPLETE."""
        async with self._lock:
            if not self.can_go_back:
                return False
            await self._transition(STEP_ORDER[self.current_index - 1])
            return True

    async def handle_back_gesture(self) -> bool:
        """
        Route a platform back gesture.

        Goes back one step when possible; on the first step it becomes an
        exit request. Returns True when the wizard stays open.
        """
        if self.can_go_back:
            return await self.back()
        return self.request_exit() == ExitDecision.CONFIRMATION_REQUIRED

    def request_exit(self) -> ExitDecision:
        """Exit immediately when nothing was entered, otherwise ask for confirmation."""
        if self._form_data.is_default():
            self.exited = True
            return ExitDecision.EXITED
        self.exit_confirmation_pending = True
        return ExitDecision.CONFIRMATION_REQUIRED

    def confirm_exit(self) -> None:
        """Leave the wizard. The saved snapshot stays so the user can resume later."""
        self.exit_confirmation_pending = False
        self.exited = True
        logger.info(f"Wizard exited at step {self.current_index + 1}")

    def cancel_exit(self) -> None:
        self.exit_confirmation_pending = False

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _leave_active(self) -> None:
        if not self._entered:
            return
        self._entered = False
        handler = self._handlers.get(self._current)
        if handler is not None:
            await handler.on_exit()

    async def _transition(self, target: WizardStep) -> None:
        await self._leave_active()

        logger.info(f"Wizard transition {self._current.name} -> {target.name}")
        self._current = target
        self._can_proceed[target] = False
        await self._save_snapshot()
        await self._enter(target, reset=False)

    async def _enter(self, step: WizardStep, reset: bool = True) -> None:
        self._current = step
        self._entered = True
        if reset:
            self._can_proceed[step] = False
        self._context.announce(f"Step {self.current_index + 1} of {self.total_steps}: {step.label}")

        handler = self._handlers.get(step)
        if handler is not None:
            await handler.on_enter()

    async def _save_snapshot(self) -> None:
        user_id = self._context.current_user_id()
        if not user_id:
            logger.debug("No active session, progress not saved")
            return

        progress = WizardProgress(
            current_step_index=self.current_index,
            total_steps=self.total_steps,
            form_data=self._form_data,
            owner_user_id=user_id,
            saved_at_epoch_ms=self._context.clock(),
        )
        try:
            await self._progress_store.save(progress)
        except ProgressStoreError as e:
            logger.error(f"Wizard progress not saved: {e}")


def build_wizard(
    context: ProvisioningContext,
    cipher: Optional[EncryptionService] = None,
    on_complete: Optional[CompletionHook] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> WizardController:
    """Wire a wizard with the default steps and services for `context`."""
    settings = context.settings
    cache = ValidationCache(
        context.storage,
        clock=context.clock,
        prefix=settings.validation_cache_prefix,
        ttl_ms=settings.validation_cache_ttl_seconds * 1000,
    )
    validator = DeviceClaimValidator(context.documents, cache, debounce_ms=settings.debounce_ms)
    sync = DeviceConfigSyncService(context, sleep=sleep)
    progress_store = WizardProgressStore(
        context.storage,
        clock=context.clock,
        ttl_days=settings.progress_ttl_days,
        cipher=cipher,
    )

    steps: List[StepHandler] = [
        WelcomeStep(),
        DeviceIdStep(validator),
        VerificationStep(validator),
        WiFiConfigStep(sync),
        PreferencesStep(sync),
        CompletionStep(progress_store, on_complete=on_complete),
    ]
    return WizardController(context, progress_store, steps)
