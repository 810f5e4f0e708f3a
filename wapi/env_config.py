"""
Infoblox appliance settings read from the environment.

Every IBA_* variable can also live in a local .env file.
"""

import os

from dotenv import load_dotenv

load_dotenv(override=True)  # Override system environment variables

DEFAULT_WAPI_VERSION = "2.5"
DEFAULT_DNS_VIEW = "default"
DEFAULT_TIMEOUT = 10

# Variables the live appliance tests need
REQUIRED_VARS = ("IBA_HOST", "IBA_USER", "IBA_PASSWORD", "IBA_DOMAIN")


def host() -> str | None:
    return os.getenv("IBA_HOST")


def user() -> str | None:
    return os.getenv("IBA_USER")


def password() -> str | None:
    return os.getenv("IBA_PASSWORD")


def domain() -> str | None:
    """Domain the live tests create their records under"""
    return os.getenv("IBA_DOMAIN")


def wapi_version() -> str:
    return os.getenv("IBA_WAPI_VERSION", DEFAULT_WAPI_VERSION)


def dns_view() -> str:
    return os.getenv("IBA_DNS_VIEW", DEFAULT_DNS_VIEW)


def ttl() -> int | None:
    value = os.getenv("IBA_TTL")
    return int(value) if value else None


def timeout() -> float:
    return float(os.getenv("IBA_TIMEOUT", DEFAULT_TIMEOUT))


def tls_verify() -> bool:
    return os.getenv("IBA_TLS_VERIFY", "true").strip().lower() not in ("0", "false", "no", "off")


def missing_vars() -> list[str]:
    return [name for name in REQUIRED_VARS if not os.getenv(name)]


def is_valid() -> bool:
    """True when every variable needed to reach a live appliance is set"""
    return not missing_vars()


def err_msg() -> str:
    return f"Infoblox appliance not configured. Set {', '.join(missing_vars()) or ', '.join(REQUIRED_VARS)}"
