"""
Headless provisioning runner.

Drives the provisioning wizard end to end for one device, for bench
setup and support use where no app UI is available.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

from pillhub.core.config import Config, load_config
from pillhub.core.context import ProvisioningContext
from pillhub.provisioning.models import AlarmMode, WizardStep
from pillhub.provisioning.steps import DeviceIdStep, PreferencesStep, WiFiConfigStep
from pillhub.provisioning.wizard import WizardController, build_wizard
from pillhub.security.encryption import EncryptionService, load_or_create_key
from pillhub.storage.base import StaticSessionProvider
from pillhub.storage.firebase import FirestoreDocumentStore, RealtimeDatabaseStore
from pillhub.storage.local import JsonFileStorage

logger = logging.getLogger(__name__)

PASSWORD_ENV_VAR = "PILLHUB_WIFI_PASSWORD"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ProvisioningFailed(Exception):
    """Headless run stopped on a step that did not allow proceeding."""


@dataclass
class ProvisioningRequest:
    """Values the headless run feeds into the wizard."""
    device_id: str
    wifi_ssid: str
    wifi_password: str
    alarm_mode: str = AlarmMode.BOTH.value
    led_intensity: int = 50
    led_color: str = "#3B82F6"
    volume: int = 75


def build_context(config: Config, user_id: str) -> ProvisioningContext:
    """Create a context backed by the Firebase REST APIs and local JSON storage."""
    firebase = config.firebase
    return ProvisioningContext(
        session=StaticSessionProvider(user_id),
        documents=FirestoreDocumentStore(
            firebase.project_id,
            auth_token=firebase.auth_token or None,
            timeout=firebase.request_timeout_seconds,
        ),
        realtime=RealtimeDatabaseStore(
            firebase.database_url,
            auth_token=firebase.auth_token or None,
            timeout=firebase.request_timeout_seconds,
        ),
        storage=JsonFileStorage(config.storage.storage_file),
        settings=config.provisioning,
    )


def build_cipher(config: Config) -> Optional[EncryptionService]:
    if not config.storage.encrypt_wifi_password:
        return None
    return EncryptionService(load_or_create_key(config.storage.key_file))


async def drive_wizard(wizard: WizardController, request: ProvisioningRequest) -> None:
    """
    Run every remaining step of a mounted wizard.

    Raises:
        ProvisioningFailed: If a step does not allow proceeding
    """
    while wizard.current_step != WizardStep.COMPLETE:
        step = wizard.current_step
        handler = wizard.handler(step)

        if isinstance(handler, DeviceIdStep):
            await handler.change_device_id(request.device_id)
            await handler.wait_idle()
        elif isinstance(handler, WiFiConfigStep):
            await handler.save(request.wifi_ssid, request.wifi_password)
            if handler.warning:
                print(f"Warning: {handler.warning}")
        elif isinstance(handler, PreferencesStep):
            await handler.update_preferences(
                alarm_mode=AlarmMode(request.alarm_mode),
                led_intensity=request.led_intensity,
                led_color=request.led_color,
                volume=request.volume,
            )
            result = await handler.save()
            if result is None:
                raise ProvisioningFailed(handler.error_message or "Saving preferences failed")
            if result.is_partial:
                print("Warning: preferences saved but not yet delivered to the device")

        if not wizard.can_proceed:
            message = handler.error_message if handler is not None else None
            raise ProvisioningFailed(message or f"Cannot continue from step {step.label}")

        await wizard.next()

    if not wizard.is_complete:
        handler = wizard.handler(WizardStep.COMPLETE)
        raise ProvisioningFailed(
            (handler.error_message if handler is not None else None) or "Setup did not complete"
        )


async def run_provisioning(
    config: Config,
    user_id: str,
    request: ProvisioningRequest,
    discard_saved: bool = False,
) -> None:
    """Mount a wizard for `user_id` and drive it to completion."""
    context = build_context(config, user_id)
    wizard = build_wizard(context, cipher=build_cipher(config))

    pending = await wizard.mount()
    if pending is not None:
        if discard_saved:
            logger.info("Discarding saved progress")
            await wizard.discard()
        else:
            print(f"Resuming saved setup at step {pending.current_step_index + 1}")
            await wizard.resume(pending)

    await drive_wizard(wizard, request)
    print(f"Device {request.device_id} is set up and ready to use")


def main() -> None:
    """Main entry point for headless provisioning."""
    parser = argparse.ArgumentParser(description="PillHub device provisioning")
    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None
    )
    parser.add_argument(
        "-v", "--verbose",
        help="Enable verbose logging",
        action="store_true"
    )
    parser.add_argument(
        "--debug",
        help="Enable debug logging",
        action="store_true"
    )
    parser.add_argument("--user-id", required=True, help="Signed-in user id")
    parser.add_argument("--device-id", required=True, help="Device ID printed on the dispenser")
    parser.add_argument("--ssid", required=True, help="Wi-Fi network name")
    parser.add_argument(
        "--password",
        help=f"Wi-Fi password (defaults to ${PASSWORD_ENV_VAR})",
        default=None
    )
    parser.add_argument(
        "--alarm-mode",
        choices=[mode.value for mode in AlarmMode],
        default=AlarmMode.BOTH.value
    )
    parser.add_argument("--led-intensity", type=int, default=50, help="LED intensity 0-100")
    parser.add_argument("--led-color", default="#3B82F6", help="LED color as #RRGGBB")
    parser.add_argument("--volume", type=int, default=75, help="Alarm volume 0-100")
    parser.add_argument(
        "--discard",
        help="Discard saved progress instead of resuming it",
        action="store_true"
    )

    args = parser.parse_args()

    config = load_config(args.config)

    # Setup logging
    if args.debug:
        log_level = logging.DEBUG
    elif args.verbose:
        log_level = logging.INFO
    else:
        log_level = getattr(logging, config.logging.level.upper(), logging.WARNING)
    logging.basicConfig(level=log_level, format=config.logging.format or LOG_FORMAT)

    password = args.password or os.environ.get(PASSWORD_ENV_VAR, "")
    request = ProvisioningRequest(
        device_id=args.device_id,
        wifi_ssid=args.ssid,
        wifi_password=password,
        alarm_mode=args.alarm_mode,
        led_intensity=args.led_intensity,
        led_color=args.led_color,
        volume=args.volume,
    )

    try:
        asyncio.run(run_provisioning(config, args.user_id, request, discard_saved=args.discard))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except ProvisioningFailed as e:
        print(f"Setup failed: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Provisioning failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
