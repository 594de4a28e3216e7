"""Tests for the regularized shape and expression solvers."""

import numpy as np
import pytest

from facefit.errors import InvalidInput, SingularSystem
from facefit.linear_solver import (Correspondences, fit_expression_coefficients, fit_shape_coefficients,
                                   solve_regularized)
from facefit.model import generate_mesh


def _all_vertices(mesh, camera):
    indices = np.arange(mesh.num_vertices)
    return Correspondences(tuple(str(i) for i in indices), indices, camera.project(mesh.vertices))


def test_correspondences_concatenate():
    first = Correspondences(('a', 'b'), [1, 2], [[0.0, 1.0], [2.0, 3.0]])
    second = Correspondences(('c',), [5], [[4.0, 5.0]])
    both = first.concatenate(second)
    assert len(both) == 3
    assert both.landmark_ids == ('a', 'b', 'c')
    np.testing.assert_array_equal(both.vertex_indices, [1, 2, 5])
    assert both.as_dict() == {'a': 1, 'b': 2, 'c': 5}
    assert len(first.concatenate(Correspondences.empty())) == 2


def test_correspondences_length_mismatch():
    with pytest.raises(InvalidInput):
        Correspondences(('a',), [1, 2], [[0.0, 0.0], [1.0, 1.0]])


def test_solve_regularized_matches_ridge():
    rng = np.random.default_rng(0)
    A = rng.standard_normal((30, 5))
    b = rng.standard_normal(30)
    coeffs = solve_regularized(A, b, 2.0)
    expected = np.linalg.solve(A.T @ A + 2.0 * np.eye(5), A.T @ b)
    np.testing.assert_allclose(coeffs, expected)


def test_solve_regularized_singular():
    with pytest.raises(SingularSystem) as excinfo:
        solve_regularized(np.zeros((6, 2)), np.ones(6), 0.0, step='shape')
    assert excinfo.value.step == 'shape'
    assert excinfo.value.num_correspondences == 3


def test_solve_regularized_nonnegative():
    rng = np.random.default_rng(1)
    A = rng.standard_normal((20, 4))
    b = A @ np.array([1.0, -2.0, 0.5, 0.0])
    coeffs = solve_regularized(A, b, 0.1, nonnegative=True)
    assert (coeffs >= 0).all()


def test_shape_coefficients_zero_for_mean_observations(shape_model, frontal_camera):
    mesh = generate_mesh(shape_model, np.zeros(shape_model.num_coefficients))
    coeffs = fit_shape_coefficients(frontal_camera, _all_vertices(mesh, frontal_camera), shape_model, 30.0)
    np.testing.assert_allclose(coeffs, np.zeros(shape_model.num_coefficients), atol=1e-10)


def test_shape_coefficients_shrink_with_lambda(shape_model, frontal_camera):
    true_coeffs = np.linspace(1.0, -1.0, shape_model.num_coefficients)
    mesh = generate_mesh(shape_model, true_coeffs)
    correspondences = _all_vertices(mesh, frontal_camera)
    norms = [np.linalg.norm(fit_shape_coefficients(frontal_camera, correspondences, shape_model, lam))
             for lam in (0.1, 10.0, 1000.0, 1e5)]
    assert all(later < earlier for earlier, later in zip(norms, norms[1:]))
    huge = fit_shape_coefficients(frontal_camera, correspondences, shape_model, 1e14)
    np.testing.assert_allclose(huge, np.zeros(shape_model.num_coefficients), atol=1e-6)


def test_shape_coefficients_converge_to_least_squares(shape_model, frontal_camera):
    rng = np.random.default_rng(4)
    true_coeffs = rng.standard_normal(shape_model.num_coefficients)
    mesh = generate_mesh(shape_model, true_coeffs)
    observed = frontal_camera.project(mesh.vertices) + rng.standard_normal((mesh.num_vertices, 2))
    indices = np.arange(mesh.num_vertices)
    correspondences = Correspondences(tuple(str(i) for i in indices), indices, observed)

    jacobian = frontal_camera.scale * np.vstack((frontal_camera.rotation[0], -frontal_camera.rotation[1]))
    basis = shape_model.rescaled_basis.reshape(mesh.num_vertices, 3, -1)
    A = np.concatenate([jacobian @ basis[v] for v in indices])
    b = (observed - frontal_camera.project(shape_model.mean_vertices)).ravel()
    expected = np.linalg.lstsq(A, b, rcond=None)[0]

    coeffs = fit_shape_coefficients(frontal_camera, correspondences, shape_model, 1e-9)
    np.testing.assert_allclose(coeffs, expected, rtol=1e-6, atol=1e-8)
    # noiseless observations are matched exactly
    noiseless = _all_vertices(mesh, frontal_camera)
    np.testing.assert_allclose(fit_shape_coefficients(frontal_camera, noiseless, shape_model, 1e-9),
                               true_coeffs, atol=1e-6)


def test_shape_coefficients_truncated(shape_model, frontal_camera):
    mesh = generate_mesh(shape_model, np.zeros(3))
    coeffs = fit_shape_coefficients(frontal_camera, _all_vertices(mesh, frontal_camera), shape_model, 1.0,
                                    num_coefficients=3)
    assert coeffs.shape == (3,)


def test_expression_coefficients_recovered(shape_model, blendshapes, frontal_camera):
    shape_coeffs = np.linspace(0.5, -0.5, shape_model.num_coefficients)
    true_expression = np.array([0.8, 0.0, 0.3, 0.0, 0.5, 0.1])
    mesh = generate_mesh(shape_model, shape_coeffs, blendshapes, true_expression)
    coeffs = fit_expression_coefficients(frontal_camera, _all_vertices(mesh, frontal_camera), shape_model,
                                         blendshapes, 1e-9, shape_coeffs)
    np.testing.assert_allclose(coeffs, true_expression, atol=1e-6)


def test_expression_coefficients_nonnegative(shape_model, blendshapes, frontal_camera):
    shape_coeffs = np.zeros(shape_model.num_coefficients)
    mesh = generate_mesh(shape_model, shape_coeffs, blendshapes, np.array([-1.0, 0.5, -0.5, 1.0, 0.0, 0.2]))
    coeffs = fit_expression_coefficients(frontal_camera, _all_vertices(mesh, frontal_camera), shape_model,
                                         blendshapes, 1.0, shape_coeffs, nonnegative=True)
    assert coeffs.shape == (6,)
    assert (coeffs >= 0).all()


def test_expression_without_blendshapes(shape_model, frontal_camera):
    mesh = generate_mesh(shape_model, np.zeros(shape_model.num_coefficients))
    coeffs = fit_expression_coefficients(frontal_camera, _all_vertices(mesh, frontal_camera), shape_model,
                                         None, 30.0, np.zeros(shape_model.num_coefficients))
    assert coeffs.shape == (0,)
