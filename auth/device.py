"""
auth/device.py -- Device fingerprinting and User-Agent parsing (DeviceFingerprinter).

The fingerprint is a SHA-256 over "user-agent|accept-language|address" in
that exact order. It is deterministic and order-sensitive; any change to one
of the three inputs yields a different device identity.
"""

from __future__ import annotations

import hashlib
import re

from auth.models import DeviceInfo, RequestContext


def fingerprint(context: RequestContext) -> str:
    components = [context.user_agent or "", context.accept_language or "", context.address or ""]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


class DeviceDetector:
    """Extracts device type, OS, and browser from a User-Agent header."""

    # Order matters: iOS UAs contain "like Mac OS X", Android and Chrome OS
    # UAs contain "Linux".
    _OS_PATTERNS = [
        (r"iPhone|iPad|iPod", "iOS"),
        (r"Android", "Android"),
        (r"CrOS", "Chrome OS"),
        (r"Windows NT", "Windows"),
        (r"Mac OS X|Macintosh", "macOS"),
        (r"Linux", "Linux"),
    ]

    # Each pattern captures the major version. Edge and Opera UAs also
    # contain "Chrome/", and Chrome UAs contain "Safari/", so check those first.
    _BROWSER_PATTERNS = [
        (r"Edg(?:e|A|iOS)?/(\d+)", "Edge"),
        (r"(?:OPR|Opera)/(\d+)", "Opera"),
        (r"SamsungBrowser/(\d+)", "Samsung Internet"),
        (r"(?:Firefox|FxiOS)/(\d+)", "Firefox"),
        (r"(?:Chrome|CriOS)/(\d+)", "Chrome"),
        (r"Version/(\d+).*Safari/", "Safari"),
    ]

    def detect(self, user_agent: str) -> DeviceInfo:
        """Parse a User-Agent string into DeviceInfo.

        Returns:
            DeviceInfo with
                - browser: "Chrome 120" | "Safari 17" | ... | "Unknown"
                - os: "iOS" | "Android" | "Windows" | "macOS" | "Linux" | "Chrome OS" | "Unknown"
                - device_type: "mobile" | "tablet" | "desktop"
                - display_name: e.g. "Chrome 120 on macOS"
        """
        if not user_agent:
            return DeviceInfo()

        os_name = self._detect_os(user_agent)
        browser = self._detect_browser(user_agent)
        return DeviceInfo(
            browser=browser,
            os=os_name,
            device_type=self._detect_device_type(user_agent),
            display_name=f"{browser} on {os_name}",
        )

    def _detect_os(self, user_agent: str) -> str:
        for pattern, os_name in self._OS_PATTERNS:
            if re.search(pattern, user_agent, re.IGNORECASE):
                return os_name
        return "Unknown"

    def _detect_browser(self, user_agent: str) -> str:
        for pattern, browser_name in self._BROWSER_PATTERNS:
            match = re.search(pattern, user_agent)
            if match:
                return f"{browser_name} {match.group(1)}"
        return "Unknown"

    def _detect_device_type(self, user_agent: str) -> str:
        # iPad UAs carry "Mobile/..." too, so tablets are checked first.
        if re.search(r"iPad|Tablet", user_agent, re.IGNORECASE):
            return "tablet"
        if re.search(r"Mobi|iPhone|iPod", user_agent, re.IGNORECASE):
            return "mobile"
        if re.search(r"Android", user_agent, re.IGNORECASE):
            return "tablet"
        return "desktop"
