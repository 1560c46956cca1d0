"""Module matrix rendering: terminal half-block rows and grayscale rasters."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, Optional

import numpy as np

# Two module rows per character: (top inked, bottom inked) -> glyph
DENSE1X2 = {(False, False): " ", (True, False): "▀", (False, True): "▄", (True, True): "█"}


class Color(Enum):
    DARK = "dark"
    LIGHT = "light"


@dataclass(frozen=True)
class RenderConfig:
    """Which color dark and light modules are drawn with.

    Glyphs ink the DARK color; `inverted()` suits light-on-dark terminals.
    """
    dark: Color = Color.DARK
    light: Color = Color.LIGHT
    quiet_zone: Optional[int] = None

    def inverted(self):
        return replace(self, dark=self.light, light=self.dark)


def _matrix(code):
    return np.asarray(getattr(code, "matrix", code), dtype=bool)


def default_quiet_zone(width):
    """4 modules for normal symbols, 2 for Micro (widths below 21)."""
    return 2 if width < 21 else 4


def _with_quiet_zone(m, quiet_zone):
    q = default_quiet_zone(m.shape[0]) if quiet_zone is None else quiet_zone
    return np.pad(m, q, constant_values=False)


def render(code, config=None) -> Iterator[str]:
    """Yield text rows of `code` (a QRCode or bool matrix), two modules per row."""
    config = config or RenderConfig()
    m = _with_quiet_zone(_matrix(code), config.quiet_zone)
    ink = np.where(m, config.dark is Color.DARK, config.light is Color.DARK)
    if ink.shape[0] % 2:
        pad = np.full((1, ink.shape[1]), config.light is Color.DARK)
        ink = np.vstack([ink, pad])
    for top, bottom in zip(ink[0::2], ink[1::2]):
        yield "".join(DENSE1X2[(bool(t), bool(b))] for t, b in zip(top, bottom))


def to_image(code, scale=4, quiet_zone=None):
    """uint8 raster, dark modules 0 and light 255, each module scale x scale pixels."""
    m = _with_quiet_zone(_matrix(code), quiet_zone)
    img = np.where(m, 0, 255).astype(np.uint8)
    return np.repeat(np.repeat(img, scale, axis=0), scale, axis=1)
