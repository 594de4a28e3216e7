"""Regularized linear least-squares fitting of shape and expression coefficients.

With the camera fixed, the projection of each landmark vertex is linear in the
coefficients (exactly for an affine camera, to first order around the current
mesh for a perspective camera). Every correspondence gives two rows of

    A c = b,    A_i = J_i B_i,    b_i = x_i - proj(v_i) + A_i c_current

where J_i is the 2x3 projection Jacobian at vertex v_i and B_i are the basis
rows of that vertex. The coefficients minimize ||A c - b||^2 + c^T W c with a
diagonal Tikhonov weight W, solved through the normal equations

    (A^T A + W) c = A^T b

For the shape model the basis is rescaled by the standard deviations, so a
flat weight lambda on these coefficients equals lambda / variance_k on the
coefficients of the orthonormal basis.
"""
from dataclasses import dataclass

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve
from scipy.optimize import nnls

from facefit.errors import InvalidInput, SingularSystem
from facefit.model import vertex_rows


@dataclass(frozen=True, eq=False)
class Correspondences:
    """Landmark identifiers, the model vertices they map to and their observed image points."""
    landmark_ids: tuple
    vertex_indices: np.ndarray
    image_points: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, 'landmark_ids', tuple(str(n) for n in self.landmark_ids))
        object.__setattr__(self, 'vertex_indices', np.asarray(self.vertex_indices, dtype=int).ravel())
        object.__setattr__(self, 'image_points', np.asarray(self.image_points, dtype=float).reshape(-1, 2))
        if not (len(self.landmark_ids) == self.vertex_indices.size == self.image_points.shape[0]):
            raise InvalidInput('Correspondence arrays have different lengths')

    def __len__(self):
        return self.vertex_indices.size

    @classmethod
    def empty(cls):
        return cls((), np.zeros(0, dtype=int), np.zeros((0, 2)))

    def concatenate(self, other):
        return Correspondences(self.landmark_ids + other.landmark_ids,
                               np.concatenate((self.vertex_indices, other.vertex_indices)),
                               np.vstack((self.image_points, other.image_points)))

    def as_dict(self):
        return dict(zip(self.landmark_ids, self.vertex_indices.tolist()))


def solve_regularized(A, b, regularization_weights, nonnegative=False, step=None):
    """Minimize ||A c - b||^2 + sum_k w_k c_k^2, optionally subject to c >= 0."""
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float).ravel()
    weights = np.broadcast_to(np.asarray(regularization_weights, dtype=float), (A.shape[1],))
    if nonnegative:
        A_reg = np.vstack((A, np.diag(np.sqrt(weights))))
        b_reg = np.concatenate((b, np.zeros(A.shape[1])))
        coeffs, _ = nnls(A_reg, b_reg)
        return coeffs
    lhs = A.T @ A + np.diag(weights)
    rhs = A.T @ b
    try:
        factor = cho_factor(lhs)
    except LinAlgError as exc:
        raise SingularSystem('Regularized normal equations are not positive definite', step=step,
                             num_correspondences=A.shape[0] // 2) from exc
    coeffs = cho_solve(factor, rhs)
    if not np.isfinite(coeffs).all():
        raise SingularSystem('Regularized normal equations gave a non-finite solution', step=step,
                             num_correspondences=A.shape[0] // 2)
    return coeffs


def _model_points(shape_model, vertex_indices, shape_coeffs, blendshapes, expression_coeffs):
    rows = vertex_rows(vertex_indices)
    points = shape_model.mean[rows] + shape_model.rescaled_basis[rows, :shape_coeffs.size] @ shape_coeffs
    if blendshapes is not None and len(blendshapes) > 0 and expression_coeffs is not None:
        points = points + blendshapes.matrix[rows] @ expression_coeffs
    return points.reshape(-1, 3)


def _linearized_system(camera, correspondences, points, basis_rows, current):
    num_points = len(correspondences)
    num_coefficients = basis_rows.shape[1]
    jacobians = camera.projection_jacobian(points)
    basis_rows = basis_rows.reshape(num_points, 3, num_coefficients)
    A = (jacobians @ basis_rows).reshape(2 * num_points, num_coefficients)
    b = (correspondences.image_points - camera.project(points)).ravel() + A @ current
    return A, b


def fit_shape_coefficients(camera, correspondences, shape_model, regularization, blendshapes=None,
                           expression_coeffs=None, shape_coeffs=None, num_coefficients=None):
    """Shape coefficients for a fixed camera and fixed expression.

    Parameters
    ----------
    camera : CameraParameters
    correspondences : Correspondences between model vertices and image points
    shape_model : ShapeModel
    regularization : lambda, weight of the prior on the coefficients
    blendshapes, expression_coeffs : fixed expression part, optional
    shape_coeffs : current shape coefficients, the linearization point
    num_coefficients : number of leading components to fit, all by default

    Returns
    -------
    (num_coefficients,) shape coefficients in standard deviations
    """
    if shape_coeffs is None:
        if num_coefficients is None:
            num_coefficients = shape_model.num_coefficients
        shape_coeffs = np.zeros(num_coefficients)
    shape_coeffs = np.asarray(shape_coeffs, dtype=float).ravel()
    num_coefficients = shape_coeffs.size
    if expression_coeffs is not None:
        expression_coeffs = np.asarray(expression_coeffs, dtype=float).ravel()

    idx = correspondences.vertex_indices
    points = _model_points(shape_model, idx, shape_coeffs, blendshapes, expression_coeffs)
    basis_rows = shape_model.rescaled_basis[vertex_rows(idx), :num_coefficients]
    A, b = _linearized_system(camera, correspondences, points, basis_rows, shape_coeffs)
    return solve_regularized(A, b, regularization, step='shape')


def fit_expression_coefficients(camera, correspondences, shape_model, blendshapes, regularization,
                                shape_coeffs, expression_coeffs=None, nonnegative=False):
    """Blendshape coefficients for a fixed camera and fixed shape.

    The prior weight is the flat `regularization` for every blendshape. With
    `nonnegative` the coefficients are constrained to c >= 0.
    """
    if blendshapes is None or len(blendshapes) == 0:
        return np.zeros(0)
    shape_coeffs = np.asarray(shape_coeffs, dtype=float).ravel()
    if expression_coeffs is None:
        expression_coeffs = np.zeros(len(blendshapes))
    expression_coeffs = np.asarray(expression_coeffs, dtype=float).ravel()

    idx = correspondences.vertex_indices
    points = _model_points(shape_model, idx, shape_coeffs, blendshapes, expression_coeffs)
    basis_rows = blendshapes.matrix[vertex_rows(idx)]
    A, b = _linearized_system(camera, correspondences, points, basis_rows, expression_coeffs)
    return solve_regularized(A, b, regularization, nonnegative=nonnegative, step='expression')
