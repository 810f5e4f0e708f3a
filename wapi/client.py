"""
Infoblox NIOS WAPI Client
Handles authentication and CNAME record calls against an Infoblox grid master
"""

import copy
import functools
import time
import warnings
from typing import Any

import pybreaker
import requests
import structlog
import urllib3
from cachetools import TTLCache
from cachetools.keys import hashkey
from pydantic import ValidationError

from wapi import env_config
from wapi.models import CNAME, CNAME_RETURN_FIELDS

# Initialize structured logger
logger = structlog.get_logger(__name__)

CNAME_OBJECT = "record:cname"

# The WAPI schema only changes when the appliance is upgraded
schema_cache = TTLCache(maxsize=100, ttl=300)  # 5 minutes


class InfobloxError(IOError):
    """Raised when a WAPI call fails or the appliance answers with a non-success status"""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _is_client_error(exc: Exception) -> bool:
    """4xx answers come from a healthy appliance"""
    return (
        isinstance(exc, requests.exceptions.HTTPError)
        and exc.response is not None
        and exc.response.status_code < 500
    )


# Circuit Breaker Listener for logging state changes
class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs circuit breaker state changes"""

    def state_change(self, cb, old_state, new_state):
        """Called when circuit breaker changes state"""
        logger.warning(
            "circuit_breaker_state_change",
            name=cb.name,
            old_state=str(old_state),
            new_state=str(new_state),
            fail_counter=cb.fail_counter,
            failure_threshold=cb.fail_max,
        )

    def failure(self, cb, exc):
        """Called when a call fails"""
        logger.debug(
            "circuit_breaker_failure",
            name=cb.name,
            exception=str(exc),
            fail_counter=cb.fail_counter,
            failure_threshold=cb.fail_max,
        )


# Opens after 5 consecutive failures, closes after 60 seconds
wapi_breaker = pybreaker.CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    exclude=[  # Don't count these as failures
        requests.exceptions.Timeout,
        _is_client_error,
    ],
    listeners=[CircuitBreakerListener()],
    name="infoblox_wapi",
)


def cached_method(cache, key_func=None):
    """
    Decorator for caching method results with logging

    Args:
        cache: TTLCache instance to use
        key_func: Optional function to generate cache key from (self, *args, **kwargs)
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            if key_func:
                cache_key = key_func(self, *args, **kwargs)
            else:
                cache_key = hashkey(*args, **kwargs)

            if cache_key in cache:
                logger.debug("cache_hit", method=func.__name__, cache_key=str(cache_key), cache_size=len(cache))
                return cache[cache_key]

            logger.debug("cache_miss", method=func.__name__, cache_key=str(cache_key), cache_size=len(cache))
            result = func(self, *args, **kwargs)
            cache[cache_key] = result
            return result

        return wrapper

    return decorator


def _error_details(response: requests.Response | None) -> tuple[str | None, str]:
    """Pull the WAPI error code and text out of a failed response"""
    if response is None:
        return None, "no response"
    try:
        body = response.json()
    except ValueError:
        return None, response.text
    if not isinstance(body, dict):
        return None, response.text
    return body.get("code"), body.get("text") or body.get("Error") or response.text


def _to_cname(result: Any) -> CNAME:
    """Build a record from a single-object WAPI result"""
    if not isinstance(result, dict):
        raise InfobloxError(f"Invalid WAPI response: expected a record, got {type(result).__name__}")
    try:
        return CNAME.from_wapi(result)
    except ValidationError as e:
        raise InfobloxError(f"Invalid WAPI response: {e}") from e


class WapiClient:
    """Client for the Infoblox NIOS WAPI"""

    def __init__(
        self,
        host: str | None = None,
        user: str | None = None,
        password: str | None = None,
        wapi_version: str | None = None,
        dns_view: str | None = None,
        ttl: int | None = None,
        timeout: float | None = None,
        tls_verify: bool | None = None,
        debug: bool = False,
    ):
        """
        Initialize WAPI client

        Args:
            host: Grid master host or URL (defaults to IBA_HOST env var)
            user: WAPI user (defaults to IBA_USER env var)
            password: WAPI password (defaults to IBA_PASSWORD env var)
            wapi_version: WAPI version (defaults to IBA_WAPI_VERSION or 2.5)
            dns_view: DNS view records live in (defaults to IBA_DNS_VIEW or "default")
            ttl: Record TTL in seconds applied on create (defaults to IBA_TTL, unset means zone default)
            timeout: Request timeout in seconds (defaults to IBA_TIMEOUT or 10)
            tls_verify: Verify the appliance certificate (defaults to IBA_TLS_VERIFY or True)
            debug: Log every request at info level
        """
        self.host = host or env_config.host()
        self.user = user or env_config.user()
        self.password = password or env_config.password()

        if not (self.host and self.user and self.password):
            raise ValueError(
                "IBA_HOST, IBA_USER and IBA_PASSWORD environment variables or host/user/password parameters are required"
            )

        self.wapi_version = wapi_version or env_config.wapi_version()
        self.dns_view = dns_view or env_config.dns_view()
        self.ttl = ttl if ttl is not None else env_config.ttl()
        self.tls_verify = env_config.tls_verify() if tls_verify is None else tls_verify
        self.debug = debug

        endpoint = self.host.rstrip("/")
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        self.base_url = f"{endpoint}/wapi/v{self.wapi_version}"

        self.session = requests.Session()
        self.session.auth = (self.user, self.password)
        self.session.verify = self.tls_verify
        self.session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})

        # Same limit for connect and read
        request_timeout = timeout if timeout is not None else env_config.timeout()
        self.timeout = (request_timeout, request_timeout)

        logger.info(
            "wapi_client_initialized",
            base_url=self.base_url,
            dns_view=self.dns_view,
            tls_verify=self.tls_verify,
            timeout_connect=self.timeout[0],
            timeout_read=self.timeout[1],
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.session.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Make HTTP request to the WAPI with circuit breaker protection

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            path: Object type or reference relative to the WAPI base (e.g. record:cname)
            **kwargs: Additional arguments for requests

        Returns:
            The "result" member of the response when present, otherwise the decoded body

        Raises:
            InfobloxError: If the request fails, returns a non-success status or the circuit is open
        """
        url = f"{self.base_url}/{path}"
        start_time = time.time()
        log = logger.info if self.debug else logger.debug

        @wapi_breaker
        def _make_request():
            if "timeout" not in kwargs:
                kwargs["timeout"] = self.timeout

            with warnings.catch_warnings():
                if not self.tls_verify:
                    # Only for this client's own requests
                    warnings.simplefilter("ignore", urllib3.exceptions.InsecureRequestWarning)
                response = self.session.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        try:
            response = _make_request()
        except pybreaker.CircuitBreakerError as e:
            logger.error(
                "circuit_breaker_open",
                message="Infoblox WAPI circuit breaker is OPEN - appliance appears to be down",
                breaker_name=wapi_breaker.name,
            )
            raise InfobloxError(
                "Infoblox WAPI is currently unavailable (circuit breaker open). "
                "The service will automatically retry in 60 seconds."
            ) from e
        except requests.exceptions.HTTPError as e:
            resp = e.response
            status_code = resp.status_code if resp is not None else 500
            code, text = _error_details(resp)
            logger.error(
                "wapi_request_failed",
                method=method,
                path=path,
                status_code=status_code,
                code=code,
                duration_ms=round((time.time() - start_time) * 1000, 1),
            )
            raise InfobloxError(f"HTTP {status_code}: {text}", status_code=status_code, code=code) from e
        except requests.exceptions.RequestException as e:
            logger.error("wapi_request_error", method=method, path=path, error_type=type(e).__name__, error=str(e))
            raise InfobloxError(f"Request failed: {str(e)}") from e

        log(
            "wapi_request",
            method=method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.time() - start_time) * 1000, 1),
        )

        if not response.text or response.text.strip() == "":
            return None

        try:
            body = response.json()
        except ValueError as e:
            logger.error("wapi_invalid_response", method=method, path=path, status_code=response.status_code)
            raise InfobloxError(
                f"Invalid WAPI response: {response.text[:200]}", status_code=response.status_code
            ) from e
        if isinstance(body, dict) and "result" in body:
            return body["result"]
        return body

    def _return_params(self) -> dict[str, Any]:
        return {"_return_fields": ",".join(CNAME_RETURN_FIELDS), "_return_as_object": 1}

    def _search_cname(self, **filters) -> list[CNAME]:
        params = {**filters, "view": self.dns_view, **self._return_params()}
        result = self._request("GET", CNAME_OBJECT, params=params)
        if result is None:
            return []
        if not isinstance(result, list):
            raise InfobloxError(f"Invalid WAPI response: expected a list of records, got {type(result).__name__}")
        return [_to_cname(rec) for rec in result]

    def _update_cname(self, ref: str, updates: dict[str, Any]) -> CNAME:
        return _to_cname(self._request("PUT", ref, json=updates, params=self._return_params()))

    # ==================== WAPI Schema ====================

    @cached_method(schema_cache, key_func=lambda client: hashkey(client.base_url))
    def _fetch_schema(self) -> dict[str, Any]:
        return self._request("GET", "", params={"_schema": 1})

    def get_schema(self) -> dict[str, Any]:
        """
        Get the WAPI schema (cached for 5 minutes)

        Returns:
            A private copy of requested_version, supported_versions and supported_objects of the appliance
        """
        return copy.deepcopy(self._fetch_schema())

    # ==================== CNAME Records ====================

    def create_cname_rec(self, alias: str, canonical: str) -> CNAME:
        """
        Create a CNAME record

        Args:
            alias: Alias FQDN
            canonical: Canonical FQDN the alias points at

        Raises:
            InfobloxError: If the alias already exists or the call fails
        """
        data = CNAME(name=alias, canonical=canonical, view=self.dns_view, ttl=self.ttl).to_wapi()
        if self.ttl is not None:
            data["use_ttl"] = True

        record = _to_cname(self._request("POST", CNAME_OBJECT, json=data, params=self._return_params()))
        logger.info("cname_created", name=record.name, canonical=record.canonical, ref=record.ref)
        return record

    def get_cname_rec(self, alias: str) -> list[CNAME]:
        """Get CNAME records by alias (case-insensitive), empty list if none"""
        return self._search_cname(**{"name:": alias})

    def get_cname_canonical_rec(self, canonical: str) -> list[CNAME]:
        """Get every CNAME record pointing at the canonical name"""
        return self._search_cname(canonical=canonical)

    def modify_cname_rec(self, alias: str, new_alias: str) -> list[CNAME]:
        """Rename the alias of every record matching it, returns the updated records"""
        updated = [self._update_cname(rec.ref, {"name": new_alias}) for rec in self.get_cname_rec(alias)]
        logger.info("cname_renamed", name=alias, new_name=new_alias, count=len(updated))
        return updated

    def modify_cname_canonical_rec(self, alias: str, new_canonical: str) -> list[CNAME]:
        """Point every record matching the alias at a new canonical name"""
        updated = [self._update_cname(rec.ref, {"canonical": new_canonical}) for rec in self.get_cname_rec(alias)]
        logger.info("cname_retargeted", name=alias, canonical=new_canonical, count=len(updated))
        return updated

    def delete_cname_rec(self, alias: str) -> list[str]:
        """
        Delete CNAME records by alias (case-insensitive)

        Returns:
            References of the deleted records, empty list if nothing matched
        """
        return [self.delete_record(rec) for rec in self.get_cname_rec(alias)]

    def delete_record(self, record: CNAME | str) -> str:
        """
        Delete a record by its WAPI reference

        Args:
            record: Record returned by this client, or a bare reference string

        Returns:
            Reference of the deleted object as confirmed by the appliance
        """
        ref = record if isinstance(record, str) else record.ref
        if not ref:
            raise ValueError("Record has no WAPI reference")

        deleted = self._request("DELETE", ref, params={"_return_as_object": 1})
        logger.info("record_deleted", ref=deleted)
        return deleted
