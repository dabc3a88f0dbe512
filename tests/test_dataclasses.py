import numpy as np
import pytest
import scipy.sparse

import dotrecon.dataclasses as cdc
from dotrecon import units
from dotrecon.errors import DimensionMismatch
from dotrecon.testing import synthetic_series


def test_build_dod_timeseries():
    dod = cdc.build_dod_timeseries(
        np.zeros((3, 4)),
        time=units.Quantity([0, 500, 1000], "ms"),
        wavelength_index=[0, 1, 0, 1],
    )

    assert dod.dims == ("time", "measurement")
    np.testing.assert_allclose(dod.time.values, [0.0, 0.5, 1.0])
    assert dod.time.attrs["units"] == "s"
    assert dod.active.values.all()
    assert (dod.samples.values == [0, 1, 2]).all()


def test_build_dod_timeseries_single_frame():
    dod = cdc.build_dod_timeseries([1.0, 2.0], time=[0.0], wavelength_index=[0, 1])
    assert dod.shape == (1, 2)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"time": [0.0, 1.0]},
        {"wavelength_index": [0, 1]},
        {"active": [True, False]},
        {"time": units.Quantity([0.0, 1.0, 2.0], "mm")},
    ],
)
def test_build_dod_timeseries_invalid(kwargs):
    args = {
        "data": np.zeros((3, 4)),
        "time": [0.0, 1.0, 2.0],
        "wavelength_index": [0, 1, 0, 1],
    }
    args.update(kwargs)

    with pytest.raises(ValueError):
        cdc.build_dod_timeseries(**args)


def test_build_extinction_table_shape():
    with pytest.raises(cdc.ValidationError):
        cdc.build_extinction_table([[1.0, 2.0, 3.0]], [760.0])


def test_measurement_series_wavelength_index():
    with pytest.raises(cdc.ValidationError):
        synthetic_series(
            np.zeros((1, 2)),
            wavelength_index=[0, 2],
            wavelengths=[760.0, 850.0],
            extinction=np.ones((2, 2)),
        )


def test_measurement_series_schema():
    dod = cdc.build_dod_timeseries(np.zeros((2, 2)), [0, 1], [0, 0])

    with pytest.raises(cdc.ValidationError):
        cdc.MeasurementSeries(
            dod=dod.rename({"measurement": "channel"}),
            wavelengths=[760.0],
            extinction=cdc.build_extinction_table([[1.0, 1.0]], [760.0]),
        )

    with pytest.raises(cdc.ValidationError):
        cdc.MeasurementSeries(
            dod=dod.drop_vars("active"),
            wavelengths=[760.0],
            extinction=cdc.build_extinction_table([[1.0, 1.0]], [760.0]),
        )


def test_inverse_operator():
    operator = cdc.InverseOperator(
        matrices=[np.ones((4, 3))],
        basis=np.asarray([30.0, 30.0, 30.0]),
        log=[("hyperParameter:", 0.05), (" reconMethod ", "standard")],
    )

    assert operator.matrices[0].dims == ("node", "measurement")
    assert operator.basis == (30, 30, 30)
    assert operator.log == [("hyperParameter", 0.05), ("reconMethod", "standard")]
    assert operator.log_value("HYPERPARAMETER") == 0.05
    assert operator.log_value("regMethod", "tikhonov") == "tikhonov"


def test_image_set_log_value():
    images = cdc.ImageSet(
        log=[("hyperParameter: ", "0.05"), ("Created on", "20240301")]
    )

    assert images.log_value("HYPERPARAMETER") == "0.05"
    assert images.log_value("created on:") == "20240301"
    assert images.log_value("imageType", "haem") == "haem"


def test_inverse_operator_empty_basis():
    operator = cdc.InverseOperator(matrices=[np.ones((4, 3))], basis=[])
    assert operator.basis is None


def test_jacobian_gm_matrices():
    with pytest.raises(cdc.ValidationError):
        cdc.Jacobian(matrices=[np.ones((3, 4))] * 2, gm_matrices=[np.ones((3, 2))])


def test_spatial_mapping():
    vol2gm = scipy.sparse.coo_array(([1.0, 1.0], ([0, 1], [2, 0])), shape=(2, 3))
    mapping = cdc.SpatialMapping(
        volume_nodes=np.zeros((3, 3)), surface_nodes=np.zeros((2, 3)), vol2gm=vol2gm
    )

    assert mapping.n_volume == 3
    assert mapping.n_surface == 2
    assert isinstance(mapping.vol2gm, scipy.sparse.csr_array)
    np.testing.assert_allclose(mapping.volume_to_surface([1.0, 2.0, 3.0]), [3.0, 1.0])


def test_spatial_mapping_invalid():
    with pytest.raises(DimensionMismatch):
        cdc.SpatialMapping(
            volume_nodes=np.zeros((3, 3)),
            surface_nodes=np.zeros((2, 3)),
            vol2gm=np.zeros((3, 2)),
        )

    with pytest.raises(DimensionMismatch):
        cdc.SpatialMapping(
            volume_nodes=np.zeros((3, 2)),
            surface_nodes=np.zeros((2, 3)),
            vol2gm=np.zeros((2, 3)),
        )


def test_build_measurement_series():
    series = cdc.build_measurement_series(
        np.zeros((3, 2)),
        time=[0.0, 0.25, 0.5],
        time_units="min",
        wavelength_index=[0, 1],
        wavelengths=[760.0, 850.0],
        extinction=[[1.0, 2.0], [3.0, 4.0]],
        name="subject01.prepro",
        source=["S1", "S1"],
        detector=["D1", "D1"],
    )

    assert series.nframes == 3
    assert series.nwavelengths == 2
    np.testing.assert_allclose(series.time, [0.0, 15.0, 30.0])
    assert list(series.dod.source.values) == ["S1", "S1"]
    assert series.extinction.sel(wavelength=850.0, chromo="HbR") == 4.0
    assert "subject01.prepro" in repr(series)
