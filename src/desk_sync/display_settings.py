"""Display settings carried alongside the cycle list in the settings snapshot."""

from __future__ import annotations

from dataclasses import asdict, dataclass

VALID_ROTATIONS = (0, 2)  # 0 = normal, 2 = 180 degrees
VALID_SCALES = ("compact", "normal", "large")


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass
class DisplaySettings:
    autoPlay: bool = True
    frameDuration: int = 200  # ms
    espRefreshDuration: int = 3000  # ms the display waits before fetching again
    gifFps: int = 0  # 0 = original timing
    showHeaders: bool = False
    displayRotation: int = 0
    displayScale: str = "normal"

    def to_dict(self) -> dict:
        return asdict(self)

    def apply(self, update: dict) -> list[str]:
        """Merge a partial update; returns change descriptions for logging.

        Numeric values are clamped. Rotation and scale values outside their
        allowed sets are ignored.
        """
        changes = []
        if update.get("autoPlay") is not None:
            self.autoPlay = bool(update["autoPlay"])
            changes.append(f"autoPlay={self.autoPlay}")
        if update.get("frameDuration") is not None:
            self.frameDuration = _clamp(int(update["frameDuration"]), 50, 5000)
            changes.append(f"frameDuration={self.frameDuration}ms")
        if update.get("espRefreshDuration") is not None:
            self.espRefreshDuration = _clamp(int(update["espRefreshDuration"]), 500, 30000)
            changes.append(f"espRefreshDuration={self.espRefreshDuration}ms")
        if update.get("gifFps") is not None:
            self.gifFps = _clamp(int(update["gifFps"]), 0, 30)
            changes.append(f"gifFps={self.gifFps}")
        if update.get("showHeaders") is not None:
            self.showHeaders = bool(update["showHeaders"])
            changes.append(f"showHeaders={self.showHeaders}")
        if update.get("displayRotation") in VALID_ROTATIONS:
            self.displayRotation = update["displayRotation"]
            changes.append(f"displayRotation={self.displayRotation}")
        if update.get("displayScale") in VALID_SCALES:
            self.displayScale = update["displayScale"]
            changes.append(f"displayScale={self.displayScale}")
        return changes

    @classmethod
    def from_dict(cls, data: dict) -> "DisplaySettings":
        settings = cls()
        settings.apply(data)
        return settings
