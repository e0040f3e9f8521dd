"""
Device profiles used for emulation.

Viewports are the exact CSS pixel sizes we want for the fold; DPR and UA are
close approximations of the real handsets.
"""

from dataclasses import dataclass

from foldy.errors import InputError

DEFAULT_DEVICE = "iphone_15_pro"

_IOS_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


@dataclass(frozen=True)
class DeviceProfile:
    key: str
    label: str
    width: int
    height: int
    pixel_ratio: float
    user_agent: str
    is_mobile: bool = True
    has_touch: bool = True

    @property
    def viewport(self) -> dict:
        return {"width": self.width, "height": self.height}

    def context_options(self) -> dict:
        """Keyword arguments for ``browser.new_context``."""
        return {
            "viewport": self.viewport,
            "device_scale_factor": self.pixel_ratio,
            "is_mobile": self.is_mobile,
            "has_touch": self.has_touch,
            "user_agent": self.user_agent,
            "locale": "en-US",
            "bypass_csp": True,
        }

    def meta(self) -> dict:
        return {
            "label": self.label,
            "viewport": self.viewport,
            "dpr": self.pixel_ratio,
            "ua": self.user_agent,
        }


DEVICES = {
    "iphone_se_2": DeviceProfile(
        key="iphone_se_2", label="iPhone SE (2nd gen)",
        width=375, height=667, pixel_ratio=2, user_agent=_IOS_UA,
    ),
    "iphone_15_pro": DeviceProfile(
        key="iphone_15_pro", label="iPhone 15 Pro",
        width=393, height=852, pixel_ratio=3, user_agent=_IOS_UA,
    ),
    "iphone_15_pro_max": DeviceProfile(
        key="iphone_15_pro_max", label="iPhone 15 Pro Max",
        width=430, height=932, pixel_ratio=3, user_agent=_IOS_UA,
    ),
    "pixel_8": DeviceProfile(
        key="pixel_8", label="Pixel 8",
        width=412, height=915, pixel_ratio=2.625,
        user_agent=(
            "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/125.0.0.0 Mobile Safari/537.36"
        ),
    ),
    "galaxy_s23": DeviceProfile(
        key="galaxy_s23", label="Galaxy S23",
        width=360, height=800, pixel_ratio=3,
        user_agent=(
            "Mozilla/5.0 (Linux; Android 14; SM-S911B) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/125.0.0.0 Mobile Safari/537.36"
        ),
    ),
}


def get_device(key: str) -> DeviceProfile:
    try:
        return DEVICES[key]
    except KeyError:
        raise InputError(f"unknown device: {key!r}", reason="unknown_device") from None


def device_or_default(key) -> DeviceProfile:
    """Lenient lookup for queued jobs, which may carry stale device keys."""
    return DEVICES.get(key) or DEVICES[DEFAULT_DEVICE]
