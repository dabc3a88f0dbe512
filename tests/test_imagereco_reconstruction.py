import numpy as np
import pytest
from numpy.testing import assert_allclose

import dotrecon.dataclasses as cdc
import dotrecon.imagereco as reco
import dotrecon.io
from dotrecon.errors import (
    DimensionMismatch,
    InvalidConfiguration,
    InverseOperatorError,
    MissingInput,
)
from dotrecon.testing import synthetic_mapping, synthetic_series

WAVELENGTHS = [760.0, 850.0]
EXTINCTION = np.asarray([[1486.5865, 3843.707], [2526.391, 1798.643]])

NMEAS_PER_WL = 4
N_VOLUME = 10
N_SURFACE = 6
NFRAMES = 5


class RecordingWriter:
    def __init__(self):
        self.calls = []

    def __call__(self, images, filename, persist):
        self.calls.append((images, filename, persist))
        return None


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def series():
    rng = np.random.default_rng(seed=1)
    return synthetic_series(
        rng.normal(size=(NFRAMES, 2 * NMEAS_PER_WL)),
        wavelength_index=[0, 1] * NMEAS_PER_WL,
        wavelengths=WAVELENGTHS,
        extinction=EXTINCTION,
    )


@pytest.fixture
def mapping():
    return synthetic_mapping(N_VOLUME, N_SURFACE)


def standard_operator(n_nodes, log=(), seed=2):
    rng = np.random.default_rng(seed=seed)
    return cdc.InverseOperator(
        matrices=[rng.normal(size=(n_nodes, NMEAS_PER_WL)) for _ in WAVELENGTHS],
        log=list(log),
        name="synthetic.invjac",
    )


def multispectral_operator(n_nodes, seed=3):
    rng = np.random.default_rng(seed=seed)
    return cdc.InverseOperator(
        matrices=[rng.normal(size=(2 * n_nodes, 2 * NMEAS_PER_WL))],
        log=[("reconMethod", "multispectral")],
        name="synthetic_ms.invjac",
    )


@pytest.mark.parametrize(
    "image_type,save_volume,expected_labels,has_volume",
    [
        ("haem", True, ["HbO", "HbR"], True),
        ("haem", False, ["HbO", "HbR"], False),
        ("mua", True, ["mua760", "mua850"], True),
        ("both", True, ["HbO", "HbR", "mua760", "mua850"], True),
        ("both", False, ["HbO", "HbR", "mua760", "mua850"], False),
    ],
)
def test_image_shapes(
    series, mapping, writer, image_type, save_volume, expected_labels, has_volume
):
    images, fname = reco.reconstruct(
        series,
        mapping,
        standard_operator(N_VOLUME),
        writer=writer,
        progress=False,
        imageType=image_type,
        saveVolumeImages=save_volume,
    )

    assert fname is None
    assert [label for label, _ in images.images()] == expected_labels
    assert_allclose(images.time, np.arange(NFRAMES))

    for _, img in images.images():
        assert img.gm.dims == ("time", "vertex")
        assert img.gm.shape == (NFRAMES, N_SURFACE)
        assert img.has_volume == has_volume
        if has_volume:
            assert img.vol.dims == ("time", "node")
            assert img.vol.shape == (NFRAMES, N_VOLUME)
        else:
            assert img.vol.size == 0


def test_cortex_space_has_no_volume_images(series, mapping, writer):
    operator = standard_operator(N_SURFACE, log=[("reconSpace", "cortex")])

    images, _ = reco.reconstruct(
        series, mapping, operator, writer=writer, progress=False, imageType="both"
    )

    for _, img in images.images():
        assert img.gm.shape == (NFRAMES, N_SURFACE)
        assert img.vol.size == 0


def test_identity_round_trip(writer):
    n = 7
    v = np.linspace(-1.0, 1.0, n)
    # measurement vectors are -dOD
    series = synthetic_series(
        -v[np.newaxis, :],
        wavelength_index=np.zeros(n, dtype=int),
        wavelengths=[760.0],
        extinction=EXTINCTION[:1],
    )
    mapping = synthetic_mapping(n, n, vol2gm=np.eye(n))
    operator = cdc.InverseOperator(matrices=[np.eye(n)])

    images, _ = reco.reconstruct(
        series,
        mapping,
        operator,
        writer=writer,
        progress=False,
        imageType="mua",
        persist=False,
    )

    assert list(images.mua.keys()) == [760.0]
    assert_allclose(images.mua[760.0].gm.values[0], v)
    assert_allclose(images.mua[760.0].vol.values[0], v)


def test_mua_images_are_unmixed_into_haem(series, mapping, writer):
    images, _ = reco.reconstruct(
        series,
        mapping,
        standard_operator(N_VOLUME),
        writer=writer,
        progress=False,
        imageType="both",
    )

    E = np.asarray(EXTINCTION) / 1e7
    mua = np.stack([images.mua[wl].vol.values for wl in WAVELENGTHS])
    haem = np.einsum("cw,wtn->ctn", np.linalg.pinv(E), mua)

    assert_allclose(images.hbo.vol.values, haem[0])
    assert_allclose(images.hbr.vol.values, haem[1])


def test_reconstruction_is_idempotent(series, mapping, writer):
    operator = standard_operator(N_VOLUME)

    results = [
        reco.reconstruct(
            series,
            mapping,
            operator,
            writer=writer,
            progress=False,
            imageType="both",
            persist=False,
        )[0]
        for _ in range(2)
    ]

    for (l1, img1), (l2, img2) in zip(results[0].images(), results[1].images()):
        assert l1 == l2
        assert np.array_equal(img1.vol.values, img2.vol.values)
        assert np.array_equal(img1.gm.values, img2.gm.values)


def test_operator_parameters_take_precedence(series, mapping, writer):
    operator = standard_operator(N_VOLUME, log=[("hyperParameter: ", 0.05)])

    images, _ = reco.reconstruct(
        series,
        mapping,
        operator,
        writer=writer,
        progress=False,
        hyperParameter=0.01,
    )

    assert images.log_value("hyperParameter") == "0.05"
    assert images.log_value("Associated inverse operator") == "synthetic.invjac"
    assert images.log_value("Associated measurement") == "synthetic.prepro"
    assert len(images.log_value("Created on")) == 14


def test_multispectral(series, mapping, writer):
    operator = multispectral_operator(N_VOLUME)

    images, _ = reco.reconstruct(
        series, mapping, operator, writer=writer, progress=False
    )

    W = operator.matrices[0].values
    y = -series.dod.values[2]
    assert_allclose(images.hbo.vol.values[2], W[:N_VOLUME] @ y)
    assert_allclose(images.hbr.vol.values[2], W[N_VOLUME:] @ y)
    assert images.mua == {}
    assert images.log_value("reconMethod") == "multispectral"


def test_multispectral_cortex(series, mapping, writer):
    operator = multispectral_operator(N_SURFACE)
    operator.log.append(("reconSpace", "cortex"))

    images, _ = reco.reconstruct(
        series, mapping, operator, writer=writer, progress=False
    )

    W = operator.matrices[0].values
    y = -series.dod.values[0]
    assert images.hbo.gm.shape == (NFRAMES, N_SURFACE)
    assert images.hbo.vol.size == 0
    assert_allclose(images.hbo.gm.values[0], W[:N_SURFACE] @ y)
    assert_allclose(images.hbr.gm.values[0], W[N_SURFACE:] @ y)


def test_multispectral_rejects_mua(series, mapping, writer):
    with pytest.raises(InvalidConfiguration):
        reco.reconstruct(
            series,
            mapping,
            multispectral_operator(N_VOLUME),
            writer=writer,
            progress=False,
            imageType="mua",
        )

    assert writer.calls == []


def test_basis_operator(series, mapping, writer):
    rng = np.random.default_rng(seed=4)
    operator = cdc.InverseOperator(
        matrices=[rng.normal(size=(8, NMEAS_PER_WL)) for _ in WAVELENGTHS],
        basis=(2, 2, 2),
    )

    images, _ = reco.reconstruct(
        series, mapping, operator, writer=writer, progress=False
    )

    assert images.hbo.vol.shape == (NFRAMES, N_VOLUME)
    assert images.hbo.gm.shape == (NFRAMES, N_SURFACE)


def test_explicit_basis_mapping(series, mapping, writer):
    operator = cdc.InverseOperator(
        matrices=[np.ones((3, NMEAS_PER_WL)) for _ in WAVELENGTHS], basis=(3,)
    )
    basis_to_volume = reco.MatrixBasisToVolume(np.ones((N_VOLUME, 3)))

    images, _ = reco.reconstruct(
        series,
        mapping,
        operator,
        writer=writer,
        progress=False,
        basis_to_volume=basis_to_volume,
        imageType="mua",
    )

    y = -series.dod.values[0, ::2]
    assert_allclose(images.mua[760.0].vol.values[0], 3 * y.sum())


def test_provider_called_once(series, mapping, writer):
    calls = []

    def provider(jacobian, series, mapping, config):
        calls.append(config)
        return standard_operator(N_VOLUME)

    jacobian = cdc.Jacobian(matrices=[np.ones((NMEAS_PER_WL, N_VOLUME))] * 2)

    reco.reconstruct(
        series,
        mapping,
        jacobian=jacobian,
        provider=provider,
        writer=writer,
        progress=False,
        hyperParameter=0.2,
    )

    assert len(calls) == 1
    assert calls[0].hyper_parameter == 0.2


def test_default_provider(series, mapping, writer):
    rng = np.random.default_rng(seed=6)
    jacobian = cdc.Jacobian(
        matrices=[rng.uniform(size=(NMEAS_PER_WL, N_VOLUME)) for _ in WAVELENGTHS],
        name="synthetic.jac",
    )

    images, _ = reco.reconstruct(
        series, mapping, jacobian=jacobian, writer=writer, progress=False
    )

    assert images.hbo.vol.shape == (NFRAMES, N_VOLUME)
    operator_name = images.log_value("Associated inverse operator")
    assert operator_name == "synthetic.jac (computed)"


def test_missing_operator_and_jacobian(series, mapping, writer):
    with pytest.raises(MissingInput):
        reco.reconstruct(series, mapping, writer=writer, progress=False)

    assert writer.calls == []


def test_provider_failure(series, mapping, writer):
    def provider(jacobian, series, mapping, config):
        raise np.linalg.LinAlgError("singular matrix")

    jacobian = cdc.Jacobian(matrices=[np.ones((NMEAS_PER_WL, N_VOLUME))] * 2)

    with pytest.raises(InverseOperatorError) as excinfo:
        reco.reconstruct(
            series,
            mapping,
            jacobian=jacobian,
            provider=provider,
            writer=writer,
            progress=False,
        )

    assert isinstance(excinfo.value, MissingInput)
    assert isinstance(excinfo.value.__cause__, np.linalg.LinAlgError)


def test_channel_count_mismatch(series, mapping, writer):
    rng = np.random.default_rng(seed=2)
    operator = cdc.InverseOperator(
        matrices=[rng.normal(size=(N_VOLUME, NMEAS_PER_WL + 1)) for _ in WAVELENGTHS]
    )

    with pytest.raises(DimensionMismatch):
        reco.reconstruct(series, mapping, operator, writer=writer, progress=False)

    assert writer.calls == []


def test_node_count_mismatch(series, mapping, writer):
    with pytest.raises(DimensionMismatch):
        reco.reconstruct(
            series,
            mapping,
            standard_operator(N_VOLUME + 1),
            writer=writer,
            progress=False,
        )

    assert writer.calls == []


def test_writer_receives_default_filename(series, mapping, writer):
    reco.reconstruct(
        series, mapping, standard_operator(N_VOLUME), writer=writer, progress=False
    )

    ((images, filename, persist),) = writer.calls
    assert str(filename) == "synthetic.dotimg"
    assert persist is True


def test_persist_without_name(mapping, writer):
    series = synthetic_series(
        np.ones((1, 2 * NMEAS_PER_WL)),
        wavelength_index=[0, 1] * NMEAS_PER_WL,
        wavelengths=WAVELENGTHS,
        extinction=EXTINCTION,
        name=None,
    )

    with pytest.raises(MissingInput):
        reco.reconstruct(
            series, mapping, standard_operator(N_VOLUME), writer=writer, progress=False
        )


def test_images_are_written(series, mapping, tmp_path):
    fname = tmp_path / "subject.dotimg"

    images, written = reco.reconstruct(
        series,
        mapping,
        standard_operator(N_VOLUME),
        filename=fname,
        progress=False,
        imageType="both",
    )

    assert written == fname
    loaded = dotrecon.io.read_dotimg(fname)

    assert loaded.log == images.log
    for (l1, img1), (l2, img2) in zip(images.images(), loaded.images()):
        assert l1 == l2
        assert_allclose(img1.vol.values, img2.vol.values)
        assert_allclose(img1.gm.values, img2.gm.values)


def test_spatial_regularization_needs_pair(series, mapping, writer):
    calls = []

    def provider(jacobian, series, mapping, config):
        calls.append(config)
        return standard_operator(N_VOLUME)

    jacobian = cdc.Jacobian(matrices=[np.ones((NMEAS_PER_WL, N_VOLUME))] * 2)

    with pytest.raises(InvalidConfiguration) as excinfo:
        reco.reconstruct(
            series,
            mapping,
            jacobian=jacobian,
            provider=provider,
            writer=writer,
            progress=False,
            regMethod="spatial",
            hyperParameter=0.01,
        )

    assert not isinstance(excinfo.value, MissingInput)
    assert calls == []
