"""Saving and loading of the reconstruction inputs in HDF5 files."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import h5py
import numpy as np
import scipy.sparse

import dotrecon.dataclasses as cdc
import dotrecon.xrutils as xrutils


def _create_dataset(group: h5py.Group, name: str, data):
    data = np.asarray(data)
    if data.size > 0 and data.dtype.kind == "f":
        return group.create_dataset(
            name, data=data, shuffle=True, compression="lzf"
        )
    return group.create_dataset(name, data=data)


def _create_string_dataset(group: h5py.Group, name: str, strings: list[str]):
    return group.create_dataset(
        name, data=np.asarray([str(s) for s in strings], dtype=h5py.string_dtype())
    )


def write_log(group: h5py.Group, log: list[tuple[str, Any]]):
    """Store (key, value) pairs as attributes of a subgroup 'log'."""
    log_group = group.create_group("log", track_order=True)
    for key, value in log:
        if isinstance(value, tuple):
            value = np.asarray(value, dtype=float)
        log_group.attrs[key] = value


def read_log(group: h5py.Group) -> list[tuple[str, Any]]:
    if "log" not in group:
        return []

    log = []
    for key, value in group["log"].attrs.items():
        if isinstance(value, bytes):
            value = value.decode()
        elif isinstance(value, np.generic):
            value = value.item()
        log.append((key, value))
    return log


def _read_name(f: h5py.File, fn: str | Path) -> str:
    name = f.attrs.get("name", "")
    if isinstance(name, bytes):
        name = name.decode()
    return name if name else str(fn)


def _read_basis(f: h5py.File):
    if "basis" in f.attrs:
        return tuple(int(b) for b in np.atleast_1d(f.attrs["basis"]))
    return None


def _write_matrices(group: h5py.Group, name: str, matrices, dims):
    grp = group.create_group(name)
    for i, m in enumerate(matrices):
        _create_dataset(grp, f"{i:03d}", xrutils.as_matrix(m, *dims))


def _read_matrices(group: h5py.Group, name: str, dims):
    grp = group[name]
    return [cdc.build_matrix(grp[k][()], dims) for k in sorted(grp.keys())]


def save_inverse_operator(fn: str | Path, operator: cdc.InverseOperator):
    """Save an inverse operator to an HDF5 file.

    Args:
        fn: File name to save the data to.
        operator: The inverse operator to save.
    """
    with h5py.File(fn, "w") as f:
        f.attrs["name"] = operator.name or ""
        if operator.basis is not None:
            f.attrs["basis"] = np.asarray(operator.basis, dtype=int)

        _write_matrices(f, "matrices", operator.matrices, ("node", "measurement"))
        write_log(f, operator.log)


def load_inverse_operator(fn: str | Path) -> cdc.InverseOperator:
    """Load an inverse operator from an HDF5 file.

    Args:
        fn: File name to load the data from.

    Returns:
        InverseOperator: the loaded operator. If no name was stored, the file name
        is used as its identity.
    """
    with h5py.File(fn, "r") as f:
        return cdc.InverseOperator(
            matrices=_read_matrices(f, "matrices", ("node", "measurement")),
            basis=_read_basis(f),
            log=read_log(f),
            name=_read_name(f, fn),
        )


def save_jacobian(fn: str | Path, jacobian: cdc.Jacobian):
    """Save a Jacobian to an HDF5 file."""

    with h5py.File(fn, "w") as f:
        f.attrs["name"] = jacobian.name or ""
        if jacobian.basis is not None:
            f.attrs["basis"] = np.asarray(jacobian.basis, dtype=int)

        _write_matrices(f, "matrices", jacobian.matrices, ("measurement", "node"))
        if jacobian.gm_matrices is not None:
            _write_matrices(
                f, "gm_matrices", jacobian.gm_matrices, ("measurement", "node")
            )


def load_jacobian(fn: str | Path) -> cdc.Jacobian:
    """Load a Jacobian from an HDF5 file."""

    with h5py.File(fn, "r") as f:
        gm_matrices = None
        if "gm_matrices" in f:
            gm_matrices = _read_matrices(f, "gm_matrices", ("measurement", "node"))

        return cdc.Jacobian(
            matrices=_read_matrices(f, "matrices", ("measurement", "node")),
            gm_matrices=gm_matrices,
            basis=_read_basis(f),
            name=_read_name(f, fn),
        )


def save_spatial_mapping(fn: str | Path, mapping: cdc.SpatialMapping):
    """Save meshes and the volume to surface operator to an HDF5 file.

    The vol2gm operator is stored by its CSR components.
    """
    with h5py.File(fn, "w") as f:
        f.attrs["name"] = mapping.name or ""
        _create_dataset(f, "volume_nodes", mapping.volume_nodes)
        _create_dataset(f, "surface_nodes", mapping.surface_nodes)
        if mapping.volume_elements is not None:
            _create_dataset(f, "volume_elements", mapping.volume_elements)

        vol2gm = scipy.sparse.csr_array(mapping.vol2gm)
        grp = f.create_group("vol2gm")
        _create_dataset(grp, "data", vol2gm.data)
        _create_dataset(grp, "indices", vol2gm.indices)
        _create_dataset(grp, "indptr", vol2gm.indptr)
        grp.attrs["shape"] = np.asarray(vol2gm.shape, dtype=int)


def load_spatial_mapping(fn: str | Path) -> cdc.SpatialMapping:
    """Load meshes and the volume to surface operator from an HDF5 file."""

    with h5py.File(fn, "r") as f:
        grp = f["vol2gm"]
        vol2gm = scipy.sparse.csr_array(
            (grp["data"][()], grp["indices"][()], grp["indptr"][()]),
            shape=tuple(int(s) for s in grp.attrs["shape"]),
        )

        volume_elements = None
        if "volume_elements" in f:
            volume_elements = f["volume_elements"][()]

        return cdc.SpatialMapping(
            volume_nodes=f["volume_nodes"][()],
            surface_nodes=f["surface_nodes"][()],
            vol2gm=vol2gm,
            volume_elements=volume_elements,
            name=_read_name(f, fn),
        )


def save_measurement_series(fn: str | Path, series: cdc.MeasurementSeries):
    """Save a measurement series to an HDF5 file."""

    dod = series.dod.transpose("time", "measurement")

    with h5py.File(fn, "w") as f:
        f.attrs["name"] = series.name or ""
        _create_dataset(f, "dod", dod.values)
        _create_dataset(f, "time", dod.time.values)
        _create_dataset(f, "wavelength_index", dod.wavelength_index.values)
        _create_dataset(f, "active", dod.active.values.astype(np.uint8))
        _create_dataset(f, "wavelengths", series.wavelengths)

        for label in ["source", "detector"]:
            if label in dod.coords:
                _create_string_dataset(f, label, dod.coords[label].values)

        ext = series.extinction.sel(chromo=cdc.CHROMOPHORES)
        _create_dataset(f, "extinction", ext.transpose("wavelength", "chromo").values)
        _create_dataset(f, "extinction_wavelengths", ext.wavelength.values)


def load_measurement_series(fn: str | Path) -> cdc.MeasurementSeries:
    """Load a measurement series from an HDF5 file.

    Returns:
        MeasurementSeries: the loaded series. If no name was stored, the file name
        is used as its identity.
    """
    with h5py.File(fn, "r") as f:
        labels = {
            label: list(f[label].asstr()[()])
            for label in ["source", "detector"]
            if label in f
        }

        dod = cdc.build_dod_timeseries(
            f["dod"][()],
            time=f["time"][()],
            wavelength_index=f["wavelength_index"][()],
            active=f["active"][()].astype(bool),
            time_units="s",
            **labels,
        )

        extinction = cdc.build_extinction_table(
            f["extinction"][()], f["extinction_wavelengths"][()]
        )

        return cdc.MeasurementSeries(
            dod=dod,
            wavelengths=f["wavelengths"][()],
            extinction=extinction,
            name=_read_name(f, fn),
        )
