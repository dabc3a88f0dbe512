"""Containers for reconstructed images."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterator, Optional

import numpy as np
import xarray as xr

from dotrecon.dataclasses.artifacts import _lookup_log


@dataclass
class Image:
    """Frames of one chromophore or wavelength in volume and surface space."""

    vol: xr.DataArray
    """Volume mesh image with dims (time, node). Empty if volume output is off."""

    gm: xr.DataArray
    """Cortical surface image with dims (time, vertex)."""

    @property
    def has_volume(self) -> bool:
        return self.vol.size > 0


@dataclass
class ImageSet:
    """Result of a reconstruction run."""

    hbo: Optional[Image] = None
    hbr: Optional[Image] = None
    mua: OrderedDict[float, Image] = field(default_factory=OrderedDict)
    """mua images keyed by wavelength in nm."""

    time: np.ndarray = field(default_factory=lambda: np.zeros(0))
    log: list[tuple[str, str]] = field(default_factory=list)
    """Provenance of the images as (key, value) pairs."""

    def __repr__(self):
        return (
            f"<ImageSet | frames: {len(self.time)}, "
            f"haem: {self.hbo is not None}, "
            f"mua: {list(self.mua.keys())}>"
        )

    def images(self) -> Iterator[tuple[str, Image]]:
        """Iterate over all images with their labels ('HbO', 'HbR', 'mua760', ...)."""
        if self.hbo is not None:
            yield "HbO", self.hbo
        if self.hbr is not None:
            yield "HbR", self.hbr
        for wl, img in self.mua.items():
            yield f"mua{wl:g}", img

    def log_value(self, key: str, default=None):
        """Look up a provenance entry by its key (case-insensitive)."""
        return _lookup_log(self.log, key, default)
