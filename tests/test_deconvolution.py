import numpy as np
import pytest

from proximity_correction.deconvolution import (
    DoseDeconvolver,
    FFTConvolver,
    crop_padding,
    deconvolve,
    mark_invalid,
)
from proximity_correction.psf import PSFDescriptor, PSFModel


def delta_kernel(shape):
    kernel = np.zeros(shape)
    kernel[shape[0] // 2, shape[1] // 2] = 1.0
    return kernel


def square_mask(size=41, half=8):
    mask = np.zeros((size, size), dtype=bool)
    c = size // 2
    mask[c - half:c + half + 1, c - half:c + half + 1] = True
    return mask


def test_delta_kernel_is_identity():
    values = np.random.default_rng(0).random((9, 7))
    convolver = FFTConvolver(delta_kernel((9, 7)))
    assert np.allclose(convolver(values), values)


def test_normalized_kernel_preserves_constant():
    kernel = np.random.default_rng(1).random((11, 11))
    kernel /= kernel.sum()
    convolver = FFTConvolver(kernel, np.ones((11, 11)))
    assert np.allclose(convolver(np.ones((11, 11))), 1.0)


def test_convolution_is_centered():
    kernel = np.zeros((7, 7))
    kernel[3, 3] = 0.5
    kernel[3, 4] = 0.5
    values = np.zeros((7, 7))
    values[3, 3] = 1.0
    result = FFTConvolver(kernel)(values)
    assert result[3, 3] == pytest.approx(0.5)
    assert result[3, 4] == pytest.approx(0.5)
    assert result.sum() == pytest.approx(1.0)


def test_shape_checks():
    with pytest.raises(ValueError):
        FFTConvolver(np.ones((4, 5)))
    with pytest.raises(ValueError):
        FFTConvolver(np.ones((5, 5)), np.ones((3, 3)))
    with pytest.raises(ValueError):
        FFTConvolver(np.ones((5, 5)))(np.ones((3, 3)))


def test_delta_kernel_needs_no_correction():
    mask = square_mask()
    dose, history = deconvolve(mask, delta_kernel(mask.shape), max_iterations=4)
    assert np.allclose(dose, mask)
    assert len(history) == 4
    assert all(h['max_residual'] == pytest.approx(0.0, abs=1e-12) for h in history)


def test_zero_iterations_returns_shape():
    mask = square_mask()
    dose, history = deconvolve(mask, delta_kernel(mask.shape), max_iterations=0)
    assert np.array_equal(dose, mask.astype(float))
    assert history == []


def test_edges_get_more_dose_than_center():
    mask = square_mask(size=81, half=20)
    model = PSFModel(PSFDescriptor(eta=0.5, alpha=0.05, beta=1.0, range=2.0), dx=0.1, window_val=10.0)
    kernel, window, occupancy, pads = model.fit_to(mask.astype(int))
    assert pads == (0, 0)

    seen = []
    deconvolver = DoseDeconvolver(kernel, window, max_iterations=6,
                                  callbacks=[lambda i, p, a: seen.append(i)])
    dose = deconvolver.run(occupancy > 0)
    assert seen == [1, 2, 3, 4, 5, 6]
    assert len(deconvolver.history) == 6

    c = 40
    assert dose[c, c - 20] > dose[c, c]
    assert dose[c - 20, c - 20] > dose[c, c - 20]
    # Nothing is written outside the shapes
    assert np.all(dose[~mask] == 0)
    assert deconvolver.history[-1]['max_residual'] < deconvolver.history[0]['max_residual']


def test_divergence_warning(caplog):
    mask = square_mask(size=21, half=4)
    # A kernel summing to 3 makes the fixed-point iteration blow up
    kernel = 3 * delta_kernel(mask.shape)
    with caplog.at_level('WARNING', logger='proximity_correction.deconvolution'):
        dose, history = deconvolve(mask, kernel, max_iterations=3, divergence_factor=1.5)
    assert history[-1]['max_residual'] > history[0]['max_residual']
    assert 'diverging' in caplog.text


def test_crop_padding_and_mark_invalid():
    values = np.arange(49, dtype=float).reshape(7, 7) - 10
    cropped = crop_padding(values, (1, 2))
    assert cropped.shape == (5, 3)
    assert cropped[0, 0] == values[1, 2]

    marked = mark_invalid(values)
    assert np.isnan(marked[values <= 0]).all()
    assert np.array_equal(marked[values > 0], values[values > 0])
    assert not np.isnan(values).any()
