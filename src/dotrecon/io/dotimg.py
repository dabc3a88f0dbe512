"""Reading and writing reconstructed images (.dotimg files)."""

from __future__ import annotations

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Optional

import h5py
import numpy as np
import xarray as xr

import dotrecon.dataclasses as cdc
import dotrecon.xrutils as xrutils
from dotrecon.errors import MissingInput
from dotrecon.io.artifacts import read_log, write_log

logger = logging.getLogger("dotrecon")

DOTIMG_SUFFIX = ".dotimg"


def dotimg_filename(measurement_name: str | Path) -> Path:
    """Derive the output file name from the name of the measurement artifact."""
    return Path(measurement_name).with_suffix(DOTIMG_SUFFIX)


def _write_image(group: h5py.Group, name: str, image: cdc.Image) -> h5py.Group:
    grp = group.create_group(name)
    for key in ["vol", "gm"]:
        data = getattr(image, key).values
        if data.size > 0:
            grp.create_dataset(key, data=data, shuffle=True, compression="lzf")
        else:
            grp.create_dataset(key, data=np.zeros((0, 0)))
    return grp


def _read_image(group: h5py.Group, time: np.ndarray) -> cdc.Image:
    coords = {"time": ("time", time, {"units": "s"})}

    vol = group["vol"][()]
    if vol.size > 0:
        vol = xr.DataArray(vol, dims=("time", "node"), coords=coords)
    else:
        vol = xrutils.empty_like_image("node")

    gm = xr.DataArray(group["gm"][()], dims=("time", "vertex"), coords=coords)

    return cdc.Image(vol=vol, gm=gm)


def write_dotimg(
    images: cdc.ImageSet, filename: str | Path | None, persist: bool = True
) -> Optional[Path]:
    """Write an ImageSet to an HDF5 file.

    Args:
        images: the reconstructed images including their provenance log.
        filename: the output file name.
        persist: if False, nothing is written.

    Returns:
        The path of the written file or None if nothing was written.
    """
    if not persist:
        logger.info("images are returned without being saved.")
        return None

    if filename is None:
        raise MissingInput("no file name to save the images to.")

    filename = Path(filename)

    with h5py.File(filename, "w") as f:
        f.create_dataset("time", data=np.asarray(images.time, dtype=float))
        write_log(f, images.log)

        if images.hbo is not None:
            _write_image(f, "hbo", images.hbo)
        if images.hbr is not None:
            _write_image(f, "hbr", images.hbr)

        if images.mua:
            mua = f.create_group("mua")
            for i, (wl, image) in enumerate(images.mua.items()):
                grp = _write_image(mua, f"{i:03d}", image)
                grp.attrs["wavelength"] = wl

    logger.info(f"images written to '{filename}'.")
    return filename


def read_dotimg(filename: str | Path) -> cdc.ImageSet:
    """Read an ImageSet from a file written by write_dotimg."""

    with h5py.File(filename, "r") as f:
        time = f["time"][()]
        images = cdc.ImageSet(time=time, log=read_log(f))

        if "hbo" in f:
            images.hbo = _read_image(f["hbo"], time)
        if "hbr" in f:
            images.hbr = _read_image(f["hbr"], time)

        if "mua" in f:
            images.mua = OrderedDict(
                (float(f["mua"][k].attrs["wavelength"]), _read_image(f["mua"][k], time))
                for k in sorted(f["mua"].keys())
            )

    return images
