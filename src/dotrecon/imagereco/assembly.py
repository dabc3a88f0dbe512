"""Accumulation of per-frame images into an ImageSet."""

from __future__ import annotations

import datetime
import logging
from collections import OrderedDict
from typing import Optional

import numpy as np
import xarray as xr

import dotrecon.xrutils as xrutils
from dotrecon.dataclasses import (
    CHROMOPHORES,
    Image,
    ImageSet,
    InverseOperator,
    MeasurementSeries,
)
from dotrecon.imagereco.config import ImageType, ReconConfig, ReconSpace

logger = logging.getLogger("dotrecon")


def build_provenance(
    config: ReconConfig,
    series: MeasurementSeries,
    operator: InverseOperator,
    created: Optional[datetime.datetime] = None,
) -> list[tuple[str, str]]:
    """Describe how a set of images was created.

    Args:
        config: the effective configuration of the run.
        series: the reconstructed measurement series.
        operator: the inverse operator that was applied.
        created: creation time. Defaults to now.

    Returns:
        A list of (key, value) string pairs.
    """
    if created is None:
        created = datetime.datetime.now()

    hyper_parameter = config.hyper_parameter
    if isinstance(hyper_parameter, tuple):
        hyper_parameter = " ".join(repr(float(v)) for v in hyper_parameter)
    else:
        hyper_parameter = repr(float(hyper_parameter))

    return [
        ("Created on", created.strftime("%Y%m%d%H%M%S")),
        ("Associated measurement", str(series.name)),
        ("Associated inverse operator", str(operator.name)),
        ("reconMethod", str(config.recon_method)),
        ("regMethod", str(config.reg_method)),
        ("hyperParameter", hyper_parameter),
        ("reconSpace", str(config.recon_space)),
        ("imageType", str(config.image_type)),
    ]


class ImageAssembler:
    """Collects the mapped images of all frames.

    Each frame owns its own slot in the preallocated arrays, so frames can be added
    in any order.

    Args:
        config: the effective reconstruction configuration.
        nframes: number of frames.
        n_volume: number of volume mesh nodes.
        n_surface: number of surface mesh nodes.
        wavelengths: the wavelengths of the measurement series.
    """

    def __init__(
        self,
        config: ReconConfig,
        nframes: int,
        n_volume: int,
        n_surface: int,
        wavelengths: np.ndarray,
    ):
        self.config = config
        self.nframes = nframes
        self.wavelengths = np.asarray(wavelengths, dtype=float)

        self._haem_vol = None
        self._haem_gm = None
        self._mua_vol = None
        self._mua_gm = None

        if config.wants_haem:
            self._haem_vol = np.zeros((len(CHROMOPHORES), nframes, n_volume))
            self._haem_gm = np.zeros((len(CHROMOPHORES), nframes, n_surface))

        if config.wants_mua:
            self._mua_vol = np.zeros((len(self.wavelengths), nframes, n_volume))
            self._mua_gm = np.zeros((len(self.wavelengths), nframes, n_surface))

    def add_chromophore(
        self,
        iframe: int,
        ichromo: int,
        vol: Optional[np.ndarray],
        gm: np.ndarray,
    ):
        if vol is not None:
            self._haem_vol[ichromo, iframe, :] = vol
        self._haem_gm[ichromo, iframe, :] = gm

    def add_mua(
        self,
        iframe: int,
        iwavelength: int,
        vol: Optional[np.ndarray],
        gm: np.ndarray,
    ):
        if vol is not None:
            self._mua_vol[iwavelength, iframe, :] = vol
        self._mua_gm[iwavelength, iframe, :] = gm

    def add(
        self,
        iframe: int,
        haem_vol: Optional[np.ndarray] = None,
        haem_gm: Optional[np.ndarray] = None,
        mua_vol: Optional[np.ndarray] = None,
        mua_gm: Optional[np.ndarray] = None,
    ):
        """Store the images of one frame.

        Haemoglobin arrays have one row per chromophore, mua arrays one row per
        wavelength. Volume arrays are None if the reconstruction space has no
        volume representation.
        """
        if haem_gm is not None:
            for ichromo, gm in enumerate(haem_gm):
                vol = None if haem_vol is None else haem_vol[ichromo]
                self.add_chromophore(iframe, ichromo, vol, gm)

        if mua_gm is not None:
            for iwl, gm in enumerate(mua_gm):
                vol = None if mua_vol is None else mua_vol[iwl]
                self.add_mua(iframe, iwl, vol, gm)

    def _keep_volume(self, is_mua: bool) -> bool:
        if not self.config.save_volume_images:
            return False
        if self.config.recon_space == ReconSpace.CORTEX:
            return False
        if is_mua and self.config.image_type == ImageType.HAEM:
            return False
        return True

    def _image(self, vol: np.ndarray, gm: np.ndarray, time, keep_volume: bool):
        coords = {"time": ("time", time, {"units": "s"})}

        if keep_volume:
            vol = xr.DataArray(vol, dims=("time", "node"), coords=coords)
        else:
            vol = xrutils.empty_like_image("node")

        gm = xr.DataArray(gm, dims=("time", "vertex"), coords=coords)

        return Image(vol=vol, gm=gm)

    def finalize(
        self, time: np.ndarray, log: list[tuple[str, str]]
    ) -> ImageSet:
        """Apply the volume suppression rules and build the ImageSet.

        Args:
            time: frame times in seconds.
            log: provenance of the images.
        """
        time = np.asarray(time, dtype=float)
        if len(time) != self.nframes:
            raise ValueError(f"expected {self.nframes} frame times but got {len(time)}")

        images = ImageSet(time=time, log=list(log))

        if self._haem_gm is not None:
            keep = self._keep_volume(is_mua=False)
            images.hbo = self._image(self._haem_vol[0], self._haem_gm[0], time, keep)
            images.hbr = self._image(self._haem_vol[1], self._haem_gm[1], time, keep)

        if self._mua_gm is not None:
            keep = self._keep_volume(is_mua=True)
            images.mua = OrderedDict(
                (wl, self._image(self._mua_vol[i], self._mua_gm[i], time, keep))
                for i, wl in enumerate(self.wavelengths)
            )

        if not all(img.has_volume for _, img in images.images()):
            logger.debug("volume images were not kept.")

        return images
