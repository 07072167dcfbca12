"""Unit tests for auth/device.py -- fingerprinting and User-Agent parsing.

Covers:
- fingerprint() is SHA-256 over "ua|accept-language|address" and is order-sensitive
- DeviceDetector.detect() for common desktop, mobile and tablet browsers
- an empty User-Agent yields the Unknown defaults
"""

import hashlib

import pytest

from auth.device import DeviceDetector, fingerprint
from auth.models import DeviceInfo, RequestContext

UA_CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
UA_SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
UA_SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
UA_EDGE_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.2210.91"
)
UA_CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.144 Mobile Safari/537.36"
)
UA_FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"


class TestFingerprint:
    def test_matches_documented_formula(self):
        ctx = RequestContext(address="198.51.100.7", user_agent="UA", accept_language="en-GB")
        expected = hashlib.sha256(b"UA|en-GB|198.51.100.7").hexdigest()
        assert fingerprint(ctx) == expected

    def test_deterministic(self):
        ctx = RequestContext(address="198.51.100.7", user_agent=UA_CHROME_MAC, accept_language="en")
        assert fingerprint(ctx) == fingerprint(RequestContext("198.51.100.7", UA_CHROME_MAC, "en"))

    def test_order_sensitive(self):
        a = RequestContext(address="x", user_agent="a", accept_language="b")
        b = RequestContext(address="x", user_agent="b", accept_language="a")
        assert fingerprint(a) != fingerprint(b)

    def test_address_change_is_a_new_device(self):
        a = RequestContext(address="198.51.100.7", user_agent=UA_CHROME_MAC)
        b = RequestContext(address="198.51.100.8", user_agent=UA_CHROME_MAC)
        assert fingerprint(a) != fingerprint(b)


class TestDeviceDetector:
    @pytest.mark.parametrize(
        "ua, browser, os_name, device_type",
        [
            (UA_CHROME_MAC, "Chrome 120", "macOS", "desktop"),
            (UA_SAFARI_IPHONE, "Safari 17", "iOS", "mobile"),
            (UA_SAFARI_IPAD, "Safari 17", "iOS", "tablet"),
            (UA_EDGE_WINDOWS, "Edge 120", "Windows", "desktop"),
            (UA_CHROME_ANDROID, "Chrome 120", "Android", "mobile"),
            (UA_FIREFOX_LINUX, "Firefox 121", "Linux", "desktop"),
        ],
    )
    def test_detect(self, ua, browser, os_name, device_type):
        info = DeviceDetector().detect(ua)
        assert info.browser == browser
        assert info.os == os_name
        assert info.device_type == device_type
        assert info.display_name == f"{browser} on {os_name}"

    def test_empty_user_agent(self):
        assert DeviceDetector().detect("") == DeviceInfo()

    def test_unrecognised_user_agent(self):
        info = DeviceDetector().detect("curl/8.4.0")
        assert info.browser == "Unknown"
        assert info.os == "Unknown"
        assert info.device_type == "desktop"
