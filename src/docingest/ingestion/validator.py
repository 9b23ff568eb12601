"""
URL validation and sanitization.
"""

import ipaddress
import logging
from urllib.parse import urlsplit, urlunsplit

from .collaborators import ValidationResult

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")


class UrlValidator:
    """
    Structural URL checks: scheme, host, optional private-address block.

    Reachability is left to the fetch stage, which retries network failures.
    """

    def __init__(self, block_private_hosts: bool = False):
        self.block_private_hosts = block_private_hosts

    async def validate(self, url: str) -> ValidationResult:
        errors = []
        try:
            parts = urlsplit(url.strip())
            hostname = parts.hostname
            # Accessing .port raises ValueError for malformed ports
            parts.port
        except (ValueError, AttributeError):
            return ValidationResult(is_valid=False, errors=["Invalid URL format"])

        if not parts.scheme or not hostname:
            return ValidationResult(is_valid=False, errors=["Invalid URL format"])

        if parts.scheme.lower() not in ALLOWED_SCHEMES:
            errors.append("Only HTTP and HTTPS protocols are supported")

        if self.block_private_hosts and self._is_private_host(hostname):
            errors.append("Private and local URLs are not allowed")

        if errors:
            logger.debug(f"URL rejected: {url} ({', '.join(errors)})")
            return ValidationResult(is_valid=False, errors=errors)

        return ValidationResult(is_valid=True, errors=[], sanitized_url=self.sanitize(url))

    def sanitize(self, url: str) -> str:
        """Drop the fragment and the trailing slash of a bare root URL."""
        parts = urlsplit(url.strip())
        if parts.path in ("", "/") and not parts.query:
            return f"{parts.scheme}://{parts.netloc}"
        return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))

    def _is_private_host(self, hostname: str) -> bool:
        if hostname.lower() == "localhost":
            return True
        try:
            address = ipaddress.ip_address(hostname)
        except ValueError:
            return False
        return address.is_private or address.is_loopback
