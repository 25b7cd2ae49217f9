"""
Data model for device provisioning.

Field names in DeviceConfigRecord and DeviceRealtimeConfig are the wire
contract with the dispenser firmware and must not change.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

DEVICE_INTENSITY_MAX = 1023
UI_SCALE_MAX = 100
CHANNEL_MAX = 255

DEFAULT_UI_LED_COLOR = "#3B82F6"
DEFAULT_DEVICE_LED_INTENSITY = 512

_HEX_COLOR_RE = re.compile(r"#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})", re.IGNORECASE)


class AlarmMode(Enum):
    """Alarm modes offered in the wizard."""
    SOUND = "sound"
    VIBRATE = "vibrate"
    BOTH = "both"
    SILENT = "silent"


class DeviceAlarmMode(Enum):
    """Alarm modes understood by the firmware."""
    OFF = "off"
    SOUND = "sound"
    LED = "led"
    BOTH = "both"


class SyncStatus(Enum):
    """Durable record sync state with the device."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass(frozen=True)
class LedColor:
    """RGB color, each channel 0-255."""
    r: int
    g: int
    b: int

    def to_dict(self) -> Dict[str, int]:
        return {"r": self.r, "g": self.g, "b": self.b}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedColor":
        return cls(r=int(data["r"]), g=int(data["g"]), b=int(data["b"]))

    def to_hex(self) -> str:
        return rgb_to_hex(self)


WHITE = LedColor(255, 255, 255)
DEFAULT_BLUE = LedColor(59, 130, 246)


def hex_to_rgb(hex_color: str) -> LedColor:
    """Convert '#RRGGBB' (case-insensitive, '#' optional) to RGB; invalid input yields default blue."""
    match = _HEX_COLOR_RE.fullmatch(hex_color or "")
    if not match:
        return DEFAULT_BLUE
    return LedColor(*(int(group, 16) for group in match.groups()))


def rgb_to_hex(color: LedColor) -> str:
    return f"#{color.r:02X}{color.g:02X}{color.b:02X}"


def ui_intensity_to_device(value: float) -> int:
    """Map the wizard's 0-100 scale to the firmware's 0-1023 scale."""
    # Half-up rounding: Python's round() is banker's rounding
    return int(value / UI_SCALE_MAX * DEVICE_INTENSITY_MAX + 0.5)


def device_intensity_to_ui(value: int) -> int:
    return int(value / DEVICE_INTENSITY_MAX * UI_SCALE_MAX + 0.5)


def to_device_alarm_mode(mode: AlarmMode) -> DeviceAlarmMode:
    """
    Map a wizard alarm mode to the firmware alarm mode.

    The dispenser has no vibration motor, so 'vibrate' falls back to the LED.
    """
    return {
        AlarmMode.SILENT: DeviceAlarmMode.OFF,
        AlarmMode.VIBRATE: DeviceAlarmMode.LED,
        AlarmMode.SOUND: DeviceAlarmMode.SOUND,
        AlarmMode.BOTH: DeviceAlarmMode.BOTH,
    }[mode]


@dataclass
class DeviceProvisioningFormData:
    """Values collected by the wizard."""
    device_id: str = ""
    wifi_ssid: str = ""
    wifi_password: str = ""
    alarm_mode: AlarmMode = AlarmMode.BOTH
    led_intensity: int = 50  # 0-100
    led_color: str = DEFAULT_UI_LED_COLOR
    volume: int = 75  # 0-100

    def __post_init__(self):
        if isinstance(self.alarm_mode, str):
            self.alarm_mode = AlarmMode(self.alarm_mode)
        if not 0 <= self.led_intensity <= UI_SCALE_MAX:
            raise ValueError(f"led_intensity must be 0-{UI_SCALE_MAX}: {self.led_intensity}")
        if not 0 <= self.volume <= UI_SCALE_MAX:
            raise ValueError(f"volume must be 0-{UI_SCALE_MAX}: {self.volume}")
        if not _HEX_COLOR_RE.fullmatch(self.led_color or ""):
            raise ValueError(f"led_color must be a hex RGB color: {self.led_color!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "wifiSSID": self.wifi_ssid,
            "wifiPassword": self.wifi_password,
            "alarmMode": self.alarm_mode.value,
            "ledIntensity": self.led_intensity,
            "ledColor": self.led_color,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceProvisioningFormData":
        defaults = cls()
        return cls(
            device_id=data.get("deviceId", defaults.device_id),
            wifi_ssid=data.get("wifiSSID", defaults.wifi_ssid),
            wifi_password=data.get("wifiPassword", defaults.wifi_password),
            alarm_mode=AlarmMode(data.get("alarmMode", defaults.alarm_mode.value)),
            led_intensity=int(data.get("ledIntensity", defaults.led_intensity)),
            led_color=data.get("ledColor", defaults.led_color),
            volume=int(data.get("volume", defaults.volume)),
        )

    def is_default(self) -> bool:
        return self == DeviceProvisioningFormData()


@dataclass
class DeviceConfigRecord:
    """Durable store document (collection deviceConfigs, key=deviceId)."""
    device_id: str
    alarm_mode: DeviceAlarmMode = DeviceAlarmMode.BOTH
    led_intensity: int = DEFAULT_DEVICE_LED_INTENSITY
    led_color: LedColor = WHITE
    wifi_configured: bool = False
    wifi_ssid: str = ""
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_updated: Optional[int] = None

    @classmethod
    def from_document(cls, device_id: str, data: Dict[str, Any]) -> "DeviceConfigRecord":
        """Build a record, filling typed defaults for missing optional fields."""
        color = data.get("ledColor")
        intensity = data.get("ledIntensity")
        return cls(
            device_id=device_id,
            alarm_mode=DeviceAlarmMode(data.get("alarmMode") or DeviceAlarmMode.BOTH.value),
            led_intensity=int(intensity) if intensity is not None else DEFAULT_DEVICE_LED_INTENSITY,
            led_color=LedColor.from_dict(color) if color else WHITE,
            wifi_configured=bool(data.get("wifiConfigured", False)),
            wifi_ssid=data.get("wifiSSID") or "",
            sync_status=SyncStatus(data.get("syncStatus") or SyncStatus.SYNCED.value),
            last_updated=data.get("lastUpdated"),
        )


@dataclass
class DeviceRealtimeConfig:
    """Real-time store payload at devices/{deviceId}/config."""
    alarm_mode: Optional[DeviceAlarmMode] = None
    led_intensity: Optional[int] = None
    led_color: Optional[LedColor] = None
    wifi_ssid: Optional[str] = None
    wifi_configured: bool = False
    wifi_configured_at: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Optional[Dict[str, Any]]) -> "DeviceRealtimeConfig":
        """Parse a payload; fields the firmware adds are kept in `extra`. The password is dropped."""
        data = dict(data or {})
        mode = data.pop("alarm_mode", None)
        color = data.pop("led_color", None)
        data.pop("wifi_password", None)
        return cls(
            alarm_mode=DeviceAlarmMode(mode) if mode else None,
            led_intensity=data.pop("led_intensity", None),
            led_color=LedColor.from_dict(color) if color else None,
            wifi_ssid=data.pop("wifi_ssid", None),
            wifi_configured=bool(data.pop("wifi_configured", False)),
            wifi_configured_at=data.pop("wifi_configured_at", None),
            extra=data,
        )


@dataclass
class DeviceClaimRecord:
    """Shared registry document (collection devices). Read-only here."""
    device_id: str
    primary_patient_id: Optional[str] = None

    @property
    def is_claimed(self) -> bool:
        return bool(self.primary_patient_id)

    @classmethod
    def from_document(cls, device_id: str, data: Dict[str, Any]) -> "DeviceClaimRecord":
        return cls(device_id=device_id, primary_patient_id=data.get("primaryPatientId"))



class WizardStep(Enum):
    """Wizard states in order. COMPLETE is terminal."""
    WELCOME = 0
    DEVICE_ID = 1
    VERIFY = 2
    WIFI = 3
    PREFERENCES = 4
    COMPLETE = 5

    @property
    def label(self) -> str:
        return _STEP_LABELS[self]

    @property
    def index(self) -> int:
        return self.value


_STEP_LABELS = {
    WizardStep.WELCOME: "Welcome",
    WizardStep.DEVICE_ID: "Device ID",
    WizardStep.VERIFY: "Verification",
    WizardStep.WIFI: "Wi-Fi Setup",
    WizardStep.PREFERENCES: "Preferences",
    WizardStep.COMPLETE: "Complete",
}
