"""Device location captured alongside a clock event.

The mobile client asks the OS for a position (bounded by
``LOCATION_TIMEOUT_SECONDS``) and posts either the coordinates or the failure
code it got. ``RequestLocationProvider`` turns that submission back into a
``Location`` or a ``LocationError``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Mapping, Protocol

from fichaje.errors import FichajeError


DEFAULT_TIMEOUT_SECONDS = 15
DEVICE_TYPES = {"mobile", "web"}


class LocationErrorCode(str, enum.Enum):
    GPS_DISABLED = "GPS_DISABLED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    LOCATION_UNAVAILABLE = "LOCATION_UNAVAILABLE"


class LocationError(FichajeError):
    status_code = 400

    def __init__(self, code: LocationErrorCode, platform: str | None = None) -> None:
        super().__init__(location_error_message(code, platform))
        self.location_code = code

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.location_code.value


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    accuracy: float | None = None
    device_type: str = "mobile"


class LocationProvider(Protocol):
    def get_current_location(self) -> Location: ...


def location_error_message(code: LocationErrorCode, platform: str | None = None) -> str:
    if code == LocationErrorCode.GPS_DISABLED:
        if platform == "android":
            return "El GPS de tu dispositivo está desactivado.\n\nVe a Ajustes > Ubicación y actívalo para poder fichar."
        if platform == "ios":
            return (
                "Los servicios de localización están desactivados.\n\n"
                "Ve a Ajustes > Privacidad y seguridad > Localización y actívalos."
            )
        return "La ubicación del dispositivo está desactivada. Actívala para poder fichar."

    if code == LocationErrorCode.PERMISSION_DENIED:
        if platform == "ios":
            return (
                "La app no tiene permiso para acceder a tu ubicación.\n\n"
                'Ve a: Ajustes > Privacidad y seguridad > Localización > [esta app] y selecciona "Al usar la app".'
            )
        if platform == "android":
            return (
                "La app no tiene permiso para acceder a tu ubicación.\n\n"
                "Ve a: Ajustes > Aplicaciones > [esta app] > Permisos > Ubicación y actívala."
            )
        return (
            "Permiso de ubicación denegado. Haz clic en el candado de la barra de direcciones "
            'y activa "Ubicación".'
        )

    return "No se pudo obtener tu ubicación. Asegúrate de tener el GPS activado y señal, e inténtalo de nuevo."


def _parse_float(raw: object) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


class RequestLocationProvider:
    """Location reported by the client in the clock action payload."""

    def __init__(self, data: Mapping[str, object], timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.data = data
        self.timeout_seconds = timeout_seconds

    @property
    def platform(self) -> str | None:
        raw = self.data.get("platform")
        return str(raw).lower() if raw else None

    def get_current_location(self) -> Location:
        raw_error = self.data.get("location_error")
        if raw_error:
            try:
                code = LocationErrorCode(str(raw_error).upper())
            except ValueError:
                code = LocationErrorCode.LOCATION_UNAVAILABLE
            raise LocationError(code, self.platform)

        age_ms = _parse_float(self.data.get("location_age_ms"))
        if age_ms is not None and age_ms > self.timeout_seconds * 1000:
            raise LocationError(LocationErrorCode.LOCATION_UNAVAILABLE, self.platform)

        latitude = _parse_float(self.data.get("latitude"))
        longitude = _parse_float(self.data.get("longitude"))
        if latitude is None or longitude is None:
            raise LocationError(LocationErrorCode.LOCATION_UNAVAILABLE, self.platform)
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise LocationError(LocationErrorCode.LOCATION_UNAVAILABLE, self.platform)

        device_type = str(self.data.get("device_type") or "mobile").lower()
        if device_type not in DEVICE_TYPES:
            device_type = "mobile"
        return Location(
            latitude=latitude,
            longitude=longitude,
            accuracy=_parse_float(self.data.get("accuracy")),
            device_type=device_type,
        )
