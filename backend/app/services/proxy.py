"""Authenticated file proxy and spreadsheet preview.

Workflow replies link to exported files (mostly Excel sheets) on storage
hosts the browser cannot reach directly. The proxy only fetches from hosts
or schemes on an allow list, and never from loopback, private or
link-local addresses.
"""

import asyncio
import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from io import BytesIO
from typing import Any
from urllib.parse import SplitResult, parse_qs, unquote, urlsplit

import requests
from openpyxl import load_workbook

from app.config import settings

logger = logging.getLogger("veston.proxy")

DEFAULT_CONTENT_TYPE = "application/octet-stream"
SPREADSHEET_MARKER = "spreadsheetml"
_EXTENSION_PATTERN = re.compile(r"\.[A-Za-z0-9]+$")


class InvalidProxyUrlError(ValueError):
    """``src`` is missing or not an http(s) URL."""


class ProxyUrlNotAllowedError(PermissionError):
    """``src`` targets a private address or is not on the allow list."""


class ProxyFetchError(RuntimeError):
    """The upstream host failed or answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SpreadsheetPreviewError(ValueError):
    """The fetched file could not be read as a workbook."""


@dataclass
class UpstreamFile:
    content: bytes
    content_type: str


def _parse_address(hostname: str):
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    try:
        # inet_aton also accepts shorthand, decimal and hex IPv4 forms (127.1, 2130706433).
        return ipaddress.IPv4Address(socket.inet_aton(hostname))
    except OSError:
        return None


def is_private_address(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if address.version == 6 and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
    )


def is_private_hostname(hostname: str) -> bool:
    normalized = hostname.lower().strip("[]")
    if normalized == "localhost" or normalized.endswith(".localhost"):
        return True
    address = _parse_address(normalized)
    return address is not None and is_private_address(address)


def resolve_host(hostname: str, port: int) -> list[str]:
    """Every address the system resolver returns for ``hostname``."""
    infos = socket.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def resolves_to_private_address(hostname: str, port: int) -> bool:
    try:
        addresses = resolve_host(hostname, port)
    except (socket.gaierror, UnicodeError) as exc:
        raise ProxyFetchError(f"Could not resolve {hostname}") from exc
    for raw in addresses:
        address = ipaddress.ip_address(raw.split("%", 1)[0])
        if is_private_address(address):
            logger.warning("Rejected proxy target host=%s resolved=%s", hostname, raw)
            return True
    return False


def host_matches(hostname: str, allowed: str) -> bool:
    if allowed.startswith("*."):
        return hostname.endswith(allowed[1:])
    return hostname == allowed


def is_allowed_proxy_url(
    url: SplitResult,
    allowed_hosts: list[str] | None = None,
    allowed_schemes: list[str] | None = None,
) -> bool:
    if allowed_hosts is None:
        allowed_hosts = settings.proxy_file_allowed_hosts
    if allowed_schemes is None:
        allowed_schemes = settings.proxy_file_allowed_schemes
    hosts = [h.strip().lower() for h in allowed_hosts if h.strip()]
    schemes = [s.strip().lower() for s in allowed_schemes if s.strip()]

    scheme = url.scheme.lower()
    hostname = (url.hostname or "").lower()
    if scheme not in ("http", "https") or not hostname:
        return False
    if is_private_hostname(hostname):
        return False

    host_allowed = any(host_matches(hostname, allowed) for allowed in hosts)
    scheme_allowed = scheme in schemes
    return host_allowed or scheme_allowed


def validate_proxy_url(src: str | None) -> SplitResult:
    """Parse and vet ``src``.

    Raises:
        InvalidProxyUrlError: missing or unparseable URL.
        ProxyUrlNotAllowedError: private target or not allow-listed.
    """
    if not src:
        raise InvalidProxyUrlError("Missing src")
    try:
        url = urlsplit(src)
        # Raises on malformed ports.
        url.port
    except ValueError as exc:
        raise InvalidProxyUrlError("Invalid src URL") from exc
    if not url.scheme or not url.netloc:
        raise InvalidProxyUrlError("Invalid src URL")
    if not is_allowed_proxy_url(url):
        logger.warning("Rejected proxy target host=%s", url.hostname)
        raise ProxyUrlNotAllowedError("URL not allowed")
    return url


def infer_filename(url: SplitResult, content_type: str) -> str:
    """Filename from the ``filename`` query param or the last path segment."""
    names = parse_qs(url.query).get("filename")
    if names and names[0]:
        filename = names[0]
    else:
        filename = unquote(url.path.rsplit("/", 1)[-1]) or "file"
    if not _EXTENSION_PATTERN.search(filename) and SPREADSHEET_MARKER in content_type:
        filename += ".xlsx"
    return filename


def content_disposition(filename: str | None, download: bool) -> str:
    if download and filename:
        safe_name = filename.replace('"', "")
        return f'attachment; filename="{safe_name}"'
    return "inline"


async def fetch_upstream(url: SplitResult, timeout_seconds: float | None = None) -> UpstreamFile:
    timeout = timeout_seconds or settings.proxy_file_timeout_seconds

    def _request() -> UpstreamFile:
        port = url.port or (443 if url.scheme.lower() == "https" else 80)
        if resolves_to_private_address(url.hostname or "", port):
            raise ProxyUrlNotAllowedError("URL not allowed")
        try:
            response = requests.get(url.geturl(), timeout=timeout, allow_redirects=False)
        except requests.RequestException as exc:
            raise ProxyFetchError(f"Upstream fetch failed: {exc}") from exc
        if response.status_code >= 400 or response.status_code < 200 or response.is_redirect:
            raise ProxyFetchError("Upstream fetch failed", status_code=response.status_code)
        return UpstreamFile(
            content=response.content,
            content_type=response.headers.get("content-type") or DEFAULT_CONTENT_TYPE,
        )

    upstream = await asyncio.to_thread(_request)
    logger.info(
        "Proxied file host=%s bytes=%d content_type=%s",
        url.hostname,
        len(upstream.content),
        upstream.content_type,
    )
    return upstream


def _cell_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def build_xlsx_preview(content: bytes, max_rows: int | None = None) -> list[dict[str, Any]]:
    """Read every sheet of a workbook into ``{"name", "rows"}`` dicts."""
    limit = max_rows if max_rows is not None else settings.xlsx_preview_max_rows
    try:
        workbook = load_workbook(filename=BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise SpreadsheetPreviewError("Failed to read spreadsheet") from exc

    sheets = []
    try:
        for worksheet in workbook.worksheets:
            rows = []
            for row in worksheet.iter_rows(values_only=True):
                if len(rows) >= limit:
                    break
                rows.append([_cell_value(value) for value in row])
            sheets.append({"name": worksheet.title, "rows": rows})
    finally:
        workbook.close()
    return sheets
