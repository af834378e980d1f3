"""Simple two-language (ko/en) message table for user-facing errors and report labels."""

_STRINGS: dict[str, dict[str, str]] = {
    "error_permission_denied": {
        "ko": "위치 권한이 거부되었어요. 권한을 허용한 뒤 다시 시도해주세요.",
        "en": "Location permission denied. Allow access and try again.",
    },
    "error_unavailable": {
        "ko": "현재 위치를 확인할 수 없어요. 잠시 후 다시 시도해주세요.",
        "en": "Current position is unavailable. Try again shortly.",
    },
    "error_timeout": {
        "ko": "위치 확인 시간이 초과되었어요. 다시 시도해주세요.",
        "en": "Timed out while locating. Try again.",
    },
    "error_location_not_set": {
        "ko": "위치가 설정되지 않았어요.",
        "en": "Location not set",
    },
    "error_astronomy": {
        "ko": "천문 계산에 실패했어요. ({error})",
        "en": "Astronomical calculation failed. ({error})",
    },
    "error_address": {
        "ko": "주소를 찾을 수 없어요. 띄어쓰기를 포함해서 입력해보세요. ({error})",
        "en": "Address not found. Try a more specific address. ({error})",
    },
    "label_location": {
        "ko": "위치",
        "en": "Location",
    },
    "label_timezone": {
        "ko": "시간대",
        "en": "Timezone",
    },
    "label_utm": {
        "ko": "UTM",
        "en": "UTM",
    },
    "label_utc_time": {
        "ko": "협정 세계시",
        "en": "UTC Time",
    },
    "label_solar_time": {
        "ko": "태양시",
        "en": "Solar Time",
    },
    "label_sidereal_time": {
        "ko": "항성시",
        "en": "Sidereal Time",
    },
    "label_moon": {
        "ko": "달",
        "en": "Moon",
    },
    "label_planets": {
        "ko": "행성",
        "en": "Planets",
    },
    "label_sun_times": {
        "ko": "일출/일몰",
        "en": "Sun & Moon",
    },
    "label_eclipses": {
        "ko": "다가오는 식",
        "en": "Upcoming eclipses",
    },
    "not_set": {
        "ko": "설정 안 됨",
        "en": "Not set",
    },
    "none_found": {
        "ko": "없음",
        "en": "none",
    },
}


def t(key: str, lang: str, **kwargs: object) -> str:
    """Return the translated string for key in lang, formatted with kwargs.

    Falls back to 'en', then to the key itself if not found.
    """
    entry = _STRINGS.get(key)
    if entry is None:
        return key
    text = entry.get(lang) or entry.get("en") or key
    return text.format(**kwargs) if kwargs else text
