"""
Infoblox CNAME Intent-Layer MCP Server

Workflow tools for managing DNS CNAME records on an Infoblox NIOS appliance.
Each tool validates its input, runs the WAPI round trips it needs and reports
every step, so an agent can reason about aliases without knowing WAPI.

Usage:
    IBA_HOST=gm.example.com IBA_USER=admin IBA_PASSWORD=... python mcp_cname.py          # stdio transport
    IBA_HOST=gm.example.com IBA_USER=admin IBA_PASSWORD=... python mcp_cname.py --http   # HTTP on port 4005
"""

import logging
import os
import re
import sys

import structlog

__version__ = "1.0.0"

# stdout is reserved for JSON-RPC in stdio transport mode, so configure
# structlog to use stderr BEFORE importing the WAPI client.
structlog.configure(
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

# Configure standard logging to stderr too
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger(__name__)

from fastmcp import FastMCP  # noqa: E402
from typing import Optional, List, Dict, Any  # noqa: E402

from wapi import env_config  # noqa: E402
from wapi.client import WapiClient  # noqa: E402

# Initialize FastMCP server
mcp = FastMCP("Infoblox CNAME Intent Layer")


# ==================== Service Client Initialization ====================

try:
    client = WapiClient()
    logger.info("WapiClient initialized successfully")
except ValueError as e:
    logger.warning(f"WapiClient initialization failed: {e}")
    client = None

NOT_INITIALIZED = "WAPI client not initialized. Check IBA_HOST, IBA_USER and IBA_PASSWORD."


# ==================== Response Helpers ====================

def intent_response(
    status: str,
    summary: str,
    steps: List[Dict] = None,
    result: Any = None,
    warnings: List[str] = None,
    next_actions: List[str] = None
) -> dict:
    """Standard intent response envelope"""
    return {
        "status": status,
        "summary": summary,
        "steps": steps or [],
        "result": result,
        "warnings": warnings or [],
        "next_actions": next_actions or []
    }


def step_result(step_name: str, status: str, result: Any = None, error: str = None) -> dict:
    """Individual step result"""
    s = {"step": step_name, "status": status}
    if result is not None:
        s["result"] = result
    if error:
        s["error"] = error
    return s


def record_view(record) -> dict:
    """JSON-safe view of a CNAME record"""
    return record.model_dump(by_alias=True, exclude_none=True)


# ==================== Validation Helpers ====================

def validate_fqdn(fqdn: str) -> tuple:
    """Validate fully qualified domain name. Returns (is_valid, error_msg)."""
    pattern = r'^([a-zA-Z0-9_]([a-zA-Z0-9_-]*[a-zA-Z0-9])?\.)*[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?\.?$'
    if fqdn and re.match(pattern, fqdn) and len(fqdn) <= 253:
        return True, ""
    return False, f"Invalid FQDN '{fqdn}'. Must be a valid domain name."


# ==================== CNAME Tools ====================

@mcp.tool()
def lookup_cname(
    alias: Optional[str] = None,
    canonical: Optional[str] = None
) -> dict:
    """
    Look up CNAME records by alias, by canonical target, or both.
    Alias lookups are case-insensitive.

    Args:
        alias: Alias FQDN (e.g., "www.example.com")
        canonical: Canonical FQDN to reverse-lookup every alias pointing at it

    Returns:
        Matching records with their WAPI references

    Examples:
        - lookup_cname(alias="www.example.com")
        - lookup_cname(canonical="lb.example.com") → every alias of the load balancer
    """
    if not client:
        return intent_response("failed", NOT_INITIALIZED)
    if not alias and not canonical:
        return intent_response("failed", "lookup_cname requires 'alias' or 'canonical'.")

    steps = []
    result = {}

    try:
        if alias:
            records = client.get_cname_rec(alias)
            steps.append(step_result(f"Look up alias {alias}", "success", {"count": len(records)}))
            result["by_alias"] = [record_view(r) for r in records]
        if canonical:
            records = client.get_cname_canonical_rec(canonical)
            steps.append(step_result(f"Reverse lookup {canonical}", "success", {"count": len(records)}))
            result["by_canonical"] = [record_view(r) for r in records]
    except Exception as e:
        return intent_response("failed", f"Failed to look up CNAME records: {e}", steps)

    total = sum(len(v) for v in result.values())
    if total:
        next_actions = ["Use modify_cname() to rename or retarget an alias"]
    else:
        next_actions = ["Use provision_cname() to create the alias"]

    return intent_response("success", f"Found {total} CNAME record(s)", steps, result=result, next_actions=next_actions)


@mcp.tool()
def provision_cname(alias: str, canonical: str) -> dict:
    """
    Create a CNAME record after checking the alias is free.

    Args:
        alias: Alias FQDN to create
        canonical: Canonical FQDN the alias points at

    Returns:
        The created record

    Examples:
        - provision_cname(alias="app.example.com", canonical="lb.example.com")
    """
    if not client:
        return intent_response("failed", NOT_INITIALIZED)

    for value in (alias, canonical):
        valid, err = validate_fqdn(value)
        if not valid:
            return intent_response("failed", err)

    steps = []

    try:
        existing = client.get_cname_rec(alias)
        steps.append(step_result("Check alias is free", "success", {"count": len(existing)}))
        if existing:
            return intent_response(
                "failed",
                f"Alias '{alias}' already exists and points at {existing[0].canonical}",
                steps,
                result={"existing": [record_view(r) for r in existing]},
                next_actions=[f"Use modify_cname(alias='{alias}', new_canonical='{canonical}') to retarget it"]
            )

        record = client.create_cname_rec(alias, canonical)
        steps.append(step_result("Create CNAME record", "success", {"ref": record.ref}))
    except Exception as e:
        return intent_response("failed", f"Failed to create CNAME {alias}: {e}", steps)

    return intent_response(
        "success",
        f"Created CNAME {record.name} → {record.canonical}",
        steps,
        result=record_view(record)
    )


@mcp.tool()
def modify_cname(
    alias: str,
    new_alias: Optional[str] = None,
    new_canonical: Optional[str] = None
) -> dict:
    """
    Rename an alias and/or point it at a new canonical name.

    Args:
        alias: Existing alias FQDN (case-insensitive)
        new_alias: New alias FQDN
        new_canonical: New canonical FQDN

    Returns:
        The updated records

    Examples:
        - modify_cname(alias="old.example.com", new_alias="new.example.com")
        - modify_cname(alias="app.example.com", new_canonical="lb2.example.com")
    """
    if not client:
        return intent_response("failed", NOT_INITIALIZED)
    if not new_alias and not new_canonical:
        return intent_response("failed", "modify_cname requires 'new_alias' or 'new_canonical'.")

    for value in (new_alias, new_canonical):
        if value:
            valid, err = validate_fqdn(value)
            if not valid:
                return intent_response("failed", err)

    steps = []
    current = alias

    try:
        if new_alias:
            records = client.modify_cname_rec(current, new_alias)
            if not records:
                return intent_response("failed", f"Alias '{alias}' not found", steps)
            steps.append(step_result(f"Rename {current} → {new_alias}", "success", {"count": len(records)}))
            current = new_alias
        if new_canonical:
            records = client.modify_cname_canonical_rec(current, new_canonical)
            if not records:
                return intent_response("failed", f"Alias '{current}' not found", steps)
            steps.append(step_result(f"Retarget {current} → {new_canonical}", "success", {"count": len(records)}))
    except Exception as e:
        return intent_response("failed", f"Failed to modify CNAME {alias}: {e}", steps)

    return intent_response(
        "success",
        f"Updated {len(records)} CNAME record(s) for {current}",
        steps,
        result=[record_view(r) for r in records]
    )


@mcp.tool()
def remove_cname(alias: str, dry_run: bool = True) -> dict:
    """
    Delete every CNAME record for an alias (case-insensitive).
    A missing alias is reported as success with nothing removed.

    Args:
        alias: Alias FQDN
        dry_run: If True (default), only show what would be deleted. Set False to execute.

    Returns:
        References of deleted records

    Examples:
        - remove_cname(alias="old.example.com") → preview
        - remove_cname(alias="old.example.com", dry_run=False)
    """
    if not client:
        return intent_response("failed", NOT_INITIALIZED)

    steps = []

    try:
        if dry_run:
            records = client.get_cname_rec(alias)
            steps.append(step_result(f"Look up alias {alias}", "success", {"count": len(records)}))
            return intent_response(
                "success",
                f"DRY RUN: Would delete {len(records)} CNAME record(s) for {alias}",
                steps,
                result=[record_view(r) for r in records],
                warnings=["This is a DRY RUN. Set dry_run=False to actually delete."] if records else [],
                next_actions=[f"Execute: remove_cname(alias='{alias}', dry_run=False)"] if records else []
            )

        refs = client.delete_cname_rec(alias)
        steps.append(step_result(f"Delete alias {alias}", "success", {"count": len(refs)}))
    except Exception as e:
        return intent_response("failed", f"Failed to delete CNAME {alias}: {e}", steps)

    summary = f"Deleted {len(refs)} CNAME record(s) for {alias}" if refs else f"No CNAME records found for {alias}"
    return intent_response("success", summary, steps, result={"deleted": refs})


@mcp.tool()
def check_connection() -> dict:
    """
    Check the appliance is reachable and supports the configured WAPI version.

    Returns:
        Requested and supported WAPI versions
    """
    if not client:
        return intent_response("failed", NOT_INITIALIZED)

    try:
        schema = client.get_schema()
    except Exception as e:
        return intent_response("failed", f"Infoblox appliance unreachable: {e}")

    supported = schema.get("supported_versions", [])
    steps = [step_result("Fetch WAPI schema", "success", {"supported_versions": len(supported)})]
    result = {
        "base_url": client.base_url,
        "requested_version": schema.get("requested_version", client.wapi_version),
        "supported_versions": supported,
    }

    if client.wapi_version not in supported:
        return intent_response(
            "failed",
            f"WAPI version {client.wapi_version} is not supported by the appliance",
            steps,
            result=result,
            next_actions=["Set IBA_WAPI_VERSION to one of the supported versions"]
        )
    return intent_response("success", f"Connected to {client.host} (WAPI v{client.wapi_version})", steps, result=result)


# ==================== Resources ====================

@mcp.resource("infoblox://cname/status")
def connection_status() -> dict:
    """WAPI client connection settings"""
    return {
        "wapi_client": client is not None,
        "host": client.host if client else env_config.host(),
        "wapi_version": client.wapi_version if client else env_config.wapi_version(),
        "dns_view": client.dns_view if client else env_config.dns_view(),
        "credentials_set": bool(env_config.user() and env_config.password()),
    }


# ==================== Server Entry Point ====================

def main():
    """Entry point for both `python mcp_cname.py` and the `infoblox-cname-mcp` CLI."""
    host = os.environ.get("MCP_HOST", "0.0.0.0")
    port = int(os.environ.get("MCP_PORT", "4005"))
    path = os.environ.get("MCP_PATH", "/mcp")

    # python mcp_cname.py          → stdio (for Claude Desktop, Cursor, etc.)
    # python mcp_cname.py --http   → HTTP (for remote clients)
    if "--http" in sys.argv:
        print("=" * 60, file=sys.stderr)
        print(f"  Infoblox CNAME Intent Layer v{__version__} — MCP Server (HTTP)", file=sys.stderr)
        print("=" * 60, file=sys.stderr)
        print(f"  Endpoint:  http://{host}:{port}{path}", file=sys.stderr)
        print("=" * 60, file=sys.stderr)

        mcp.run(
            transport="http",
            host=host,
            port=port,
            path=path
        )
    else:
        mcp.run()


if __name__ == "__main__":
    main()
