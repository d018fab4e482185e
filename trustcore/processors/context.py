"""
Request Context Processor

Derives the client identifier used by lockout and rate limiting, and the
identifier context attached to security events.

Identifier: "<client ip>:<first 50 chars of user agent>". The client IP
is taken from proxy headers in order X-Forwarded-For (first hop),
X-Real-IP, CF-Connecting-IP, then the socket peer.

Uses GeoIP2 for coarse location and user-agents for client family.
Both fail open: a missing database or unparsable UA yields "unknown".
"""

import logging
from typing import Any, Dict, Mapping, Optional

import geoip2.database
from user_agents import parse as parse_user_agent


logger = logging.getLogger(__name__)


UA_PREFIX_LENGTH = 50
UNKNOWN_IP = "unknown"

PRIVATE_PREFIXES = (
    "10.",
    "172.16.", "172.17.", "172.18.", "172.19.",
    "172.20.", "172.21.", "172.22.", "172.23.",
    "172.24.", "172.25.", "172.26.", "172.27.",
    "172.28.", "172.29.", "172.30.", "172.31.",
    "192.168.",
    "127.",
    "0.",
    "::1",
    "fe80:",
)


# =============================================================================
# Context Processor
# =============================================================================

class RequestContextProcessor:
    """
    Enriches raw request metadata for gating and audit.

    No decisions are made here.
    """

    def __init__(self, geoip_path: Optional[str] = "assets/GeoLite2-City.mmdb") -> None:
        """Open the GeoIP reader; fail open if the database is unavailable."""
        self.geoip = None
        if geoip_path:
            try:
                self.geoip = geoip2.database.Reader(geoip_path)
            except Exception as e:
                logger.warning(f"GeoIP database unavailable, using defaults: {e}")

    # -------------------------------------------------------------------------
    # Identifier
    # -------------------------------------------------------------------------

    @staticmethod
    def client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
        """Resolve the client IP from proxy headers, then the socket peer."""
        lowered = {k.lower(): v for k, v in headers.items()}

        forwarded = lowered.get("x-forwarded-for", "")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first

        for header in ("x-real-ip", "cf-connecting-ip"):
            value = lowered.get(header, "").strip()
            if value:
                return value

        return peer or UNKNOWN_IP

    def client_identifier(self, headers: Mapping[str, str], peer: Optional[str] = None) -> str:
        """Composite IP + truncated user agent identifier."""
        lowered = {k.lower(): v for k, v in headers.items()}
        user_agent = lowered.get("user-agent", "")
        return f"{self.client_ip(headers, peer)}:{user_agent[:UA_PREFIX_LENGTH]}"

    # -------------------------------------------------------------------------
    # Event Context
    # -------------------------------------------------------------------------

    def describe(
        self,
        headers: Mapping[str, str],
        peer: Optional[str] = None,
        path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build the identifier context recorded on security events.

        Returns:
            Dict with identifier, ip, user_agent, browser, os, device,
            is_bot_ua, geo and (optionally) path.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        ip = self.client_ip(headers, peer)
        user_agent = lowered.get("user-agent", "")

        context: Dict[str, Any] = {
            "identifier": f"{ip}:{user_agent[:UA_PREFIX_LENGTH]}",
            "ip": ip,
            "user_agent": user_agent,
            "geo": self.resolve_ip(ip),
        }
        context.update(self.describe_user_agent(user_agent))
        if path:
            context["path"] = path
        return context

    @staticmethod
    def describe_user_agent(user_agent: str) -> Dict[str, Any]:
        """Client family summary; non-browser agents are flagged."""
        if not user_agent:
            return {"browser": "unknown", "os": "unknown", "device": "unknown", "is_bot_ua": True}

        ua = parse_user_agent(user_agent)
        if ua.is_mobile:
            device = "mobile"
        elif ua.is_tablet:
            device = "tablet"
        elif ua.is_pc:
            device = "desktop"
        else:
            device = "other"

        return {
            "browser": ua.browser.family,
            "os": ua.os.family,
            "device": device,
            # 'Other' family means the parser could not identify a real browser
            "is_bot_ua": bool(ua.is_bot or ua.browser.family == "Other"),
        }

    def resolve_ip(self, ip_address: str) -> Dict[str, Any]:
        """
        Resolve IP address to coarse location.

        Returns neutral defaults for private IPs or on GeoIP failure.
        """
        defaults = {"city": "Unknown", "country": "XX"}

        if ip_address == UNKNOWN_IP or ip_address.startswith(PRIVATE_PREFIXES):
            return defaults
        if self.geoip is None:
            return defaults

        try:
            response = self.geoip.city(ip_address)
            return {
                "city": response.city.name or "Unknown",
                "country": response.country.iso_code or "XX",
            }
        except Exception as e:
            logger.debug(f"GeoIP lookup failed for {ip_address}: {e}")
            return defaults

    def close(self) -> None:
        if self.geoip is not None:
            self.geoip.close()
            self.geoip = None
