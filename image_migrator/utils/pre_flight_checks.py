import re
from typing import Dict, Optional, Tuple

_CLOUDINARY_URL_RE = re.compile(r"cloudinary://([^:]+):([^@]+)@(.+)")


class ConfigurationError(Exception):
    """Raised when required credentials are missing before any work starts."""
    pass


def parse_cloudinary_url(value: Optional[str]) -> Optional[Tuple[str, str, str]]:
    """
    Splits a ``cloudinary://<api_key>:<api_secret>@<cloud_name>`` URL.

    Returns:
        ``(api_key, api_secret, cloud_name)`` or ``None`` when the value is
        empty or not a Cloudinary URL.
    """
    if not value:
        return None
    match = _CLOUDINARY_URL_RE.match(value.strip())
    if not match:
        return None
    return match.group(1), match.group(2), match.group(3).strip()


def run_pre_flight_checks(config: dict, *, require_cloudinary: bool = True) -> None:
    """
    Verifies that the credentials needed by this invocation are present.

    Args:
        config: The application configuration dictionary.
        require_cloudinary: Whether the target store credentials are needed
            (migration and status modes) or only the source store ones
            (cleanup mode).

    Raises:
        ConfigurationError: If any credential is missing.
    """
    supabase: Dict[str, str] = config.get("supabase", {})
    missing = [f"supabase.{key}" for key in ("url", "service_role_key") if not supabase.get(key)]

    if require_cloudinary:
        cloudinary: Dict[str, str] = config.get("cloudinary", {})
        missing += [
            f"cloudinary.{key}" for key in ("api_key", "api_secret", "cloud_name") if not cloudinary.get(key)
        ]

    if not missing:
        return
    if all(m.startswith("cloudinary.") for m in missing):
        raise ConfigurationError("Cloudinary credentials not configured")
    raise ConfigurationError(f"Missing credentials: {', '.join(missing)}")
