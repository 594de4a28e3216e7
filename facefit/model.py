"""In-memory morphable model assets.

A ShapeModel, its BlendshapeSet, the EdgeTopology and ContourDefinition of its
mesh and a LandmarkMapping are loaded once and shared, read-only, by every fit.
Nothing in the fitting code writes into these arrays.
"""
from dataclasses import dataclass
from functools import cached_property
from typing import NamedTuple, Optional, Sequence

import numpy as np

from facefit.errors import InvalidInput


class Landmark(NamedTuple):
    """A named 2D image point, in 0-based pixel coordinates."""
    name: str
    coordinates: np.ndarray


def vertex_rows(vertex_indices):
    """Row indices of the x, y, z entries of the given vertices in a 3V vector."""
    vertex_indices = np.asarray(vertex_indices, dtype=int)
    return (3 * vertex_indices[:, None] + np.arange(3)[None, :]).ravel()


@dataclass(frozen=True, eq=False)
class ShapeModel:
    """PCA shape model: mean, orthonormal basis and per-component standard deviation.

    Parameters
    ----------
    mean : (3V,) mean vertex positions, xyz interleaved
    basis : (3V, K) orthonormal PCA basis
    stddev : (K,) standard deviation of each component
    triangles : (T, 3) vertex indices, counter-clockwise seen from outside
    texcoords : optional (V, 2) texture coordinates in [0, 1], v pointing down
    """
    mean: np.ndarray
    basis: np.ndarray
    stddev: np.ndarray
    triangles: np.ndarray
    texcoords: Optional[np.ndarray] = None

    def __post_init__(self):
        mean = np.asarray(self.mean, dtype=float).ravel()
        basis = np.asarray(self.basis, dtype=float)
        stddev = np.asarray(self.stddev, dtype=float).ravel()
        triangles = np.asarray(self.triangles, dtype=int).reshape(-1, 3)
        if mean.size % 3 != 0:
            raise InvalidInput('Mean shape length ' + str(mean.size) + ' is not a multiple of 3')
        if basis.ndim != 2 or basis.shape[0] != mean.size:
            raise InvalidInput('Shape basis has shape ' + str(basis.shape) + ', expected ('
                               + str(mean.size) + ', K)')
        if stddev.size != basis.shape[1]:
            raise InvalidInput('Got ' + str(stddev.size) + ' standard deviations for '
                               + str(basis.shape[1]) + ' basis vectors')
        num_vertices = mean.size // 3
        if triangles.size and (triangles.min() < 0 or triangles.max() >= num_vertices):
            raise InvalidInput('Triangle list references vertices outside the model')
        object.__setattr__(self, 'mean', mean)
        object.__setattr__(self, 'basis', basis)
        object.__setattr__(self, 'stddev', stddev)
        object.__setattr__(self, 'triangles', triangles)
        if self.texcoords is not None:
            texcoords = np.asarray(self.texcoords, dtype=float).reshape(-1, 2)
            if texcoords.shape[0] != num_vertices:
                raise InvalidInput('Got ' + str(texcoords.shape[0]) + ' texture coordinates for '
                                   + str(num_vertices) + ' vertices')
            object.__setattr__(self, 'texcoords', texcoords)

    @property
    def num_vertices(self):
        return self.mean.size // 3

    @property
    def num_coefficients(self):
        return self.basis.shape[1]

    @property
    def mean_vertices(self):
        return self.mean.reshape(-1, 3)

    @cached_property
    def rescaled_basis(self):
        """Basis scaled by the standard deviations, coefficients are in units of sigma."""
        return self.basis * self.stddev[None, :]

    def draw_sample(self, coefficients):
        """Vertex positions (V, 3) for the given (possibly truncated) shape coefficients."""
        coefficients = np.asarray(coefficients, dtype=float).ravel()
        if coefficients.size > self.num_coefficients:
            raise InvalidInput('Got ' + str(coefficients.size) + ' shape coefficients for a model with '
                               + str(self.num_coefficients) + ' components')
        shape = self.mean + self.rescaled_basis[:, :coefficients.size] @ coefficients
        return shape.reshape(-1, 3)


class Blendshape(NamedTuple):
    name: str
    deformation: np.ndarray


class BlendshapeSet:
    """Ordered expression offsets, each a (3V,) vector aligned with the shape model."""

    def __init__(self, blendshapes: Sequence[Blendshape]):
        self.blendshapes = tuple(Blendshape(str(bs.name), np.asarray(bs.deformation, dtype=float).ravel())
                                 for bs in blendshapes)
        lengths = {bs.deformation.size for bs in self.blendshapes}
        if len(lengths) > 1:
            raise InvalidInput('Blendshapes have differing lengths: ' + str(sorted(lengths)))

    def __len__(self):
        return len(self.blendshapes)

    def __iter__(self):
        return iter(self.blendshapes)

    def __getitem__(self, index):
        return self.blendshapes[index]

    @property
    def names(self):
        return [bs.name for bs in self.blendshapes]

    @cached_property
    def matrix(self):
        """(3V, E) matrix with one blendshape per column."""
        if not self.blendshapes:
            return np.zeros((0, 0))
        return np.asarray([bs.deformation for bs in self.blendshapes]).transpose()

    def validate(self, shape_model):
        for bs in self.blendshapes:
            if bs.deformation.size != shape_model.mean.size:
                raise InvalidInput('Blendshape ' + bs.name + ' has length ' + str(bs.deformation.size)
                                   + ', the shape model has ' + str(shape_model.mean.size))


@dataclass(frozen=True, eq=False)
class Mesh:
    """Vertex positions plus the model's shared triangle list."""
    vertices: np.ndarray
    triangles: np.ndarray
    texcoords: Optional[np.ndarray] = None
    colors: Optional[np.ndarray] = None

    @property
    def num_vertices(self):
        return self.vertices.shape[0]


def generate_mesh(shape_model, shape_coeffs, blendshapes=None, expression_coeffs=None):
    """mean + basis . shape_coeffs + blendshapes . expression_coeffs as a Mesh."""
    vertices = shape_model.draw_sample(shape_coeffs)
    if blendshapes is not None and len(blendshapes) > 0 and expression_coeffs is not None:
        expression_coeffs = np.asarray(expression_coeffs, dtype=float).ravel()
        if expression_coeffs.size != len(blendshapes):
            raise InvalidInput('Got ' + str(expression_coeffs.size) + ' expression coefficients for '
                               + str(len(blendshapes)) + ' blendshapes')
        vertices = vertices + (blendshapes.matrix @ expression_coeffs).reshape(-1, 3)
    return Mesh(vertices=vertices, triangles=shape_model.triangles, texcoords=shape_model.texcoords)


@dataclass(frozen=True, eq=False)
class EdgeTopology:
    """Per edge, its two triangles (-1 for a boundary edge) and its two vertices."""
    adjacent_faces: np.ndarray
    adjacent_vertices: np.ndarray

    def __post_init__(self):
        faces = np.asarray(self.adjacent_faces, dtype=int).reshape(-1, 2)
        vertices = np.asarray(self.adjacent_vertices, dtype=int).reshape(-1, 2)
        if faces.shape[0] != vertices.shape[0]:
            raise InvalidInput('Edge topology has ' + str(faces.shape[0]) + ' face pairs but '
                               + str(vertices.shape[0]) + ' vertex pairs')
        object.__setattr__(self, 'adjacent_faces', faces)
        object.__setattr__(self, 'adjacent_vertices', vertices)

    @property
    def num_edges(self):
        return self.adjacent_faces.shape[0]

    @classmethod
    def from_triangles(cls, triangles):
        """Build the topology of a triangle list. Edges come out sorted by vertex pair."""
        edges = {}
        for face_idx, triangle in enumerate(np.asarray(triangles, dtype=int).reshape(-1, 3)):
            for a, b in ((triangle[0], triangle[1]), (triangle[1], triangle[2]), (triangle[2], triangle[0])):
                key = (min(a, b), max(a, b))
                faces = edges.setdefault(key, [])
                if len(faces) == 2:
                    raise InvalidInput('Edge ' + str(key) + ' is shared by more than two triangles')
                faces.append(face_idx)
        keys = sorted(edges)
        adjacent_vertices = np.array(keys, dtype=int).reshape(-1, 2)
        adjacent_faces = np.array([edges[k] + [-1] * (2 - len(edges[k])) for k in keys], dtype=int).reshape(-1, 2)
        return cls(adjacent_faces=adjacent_faces, adjacent_vertices=adjacent_vertices)

    def validate(self, num_vertices, num_triangles):
        if self.num_edges == 0:
            return
        if self.adjacent_vertices.min() < 0 or self.adjacent_vertices.max() >= num_vertices:
            raise InvalidInput('Edge topology references vertices outside the mesh')
        if self.adjacent_faces.min() < -1 or self.adjacent_faces.max() >= num_triangles:
            raise InvalidInput('Edge topology references triangles outside the mesh')


class LandmarkMapping:
    """Maps external landmark identifiers (e.g. ibug '31') to model vertex indices."""

    def __init__(self, mappings=None):
        self.mappings = {str(name): int(vertex) for name, vertex in (mappings or {}).items()}
        self._reverse = {vertex: name for name, vertex in self.mappings.items()}

    def __len__(self):
        return len(self.mappings)

    def __contains__(self, name):
        return str(name) in self.mappings

    def convert(self, name):
        """Vertex index of a landmark, or None if the landmark has no mapping."""
        return self.mappings.get(str(name))

    def landmark_for_vertex(self, vertex):
        return self._reverse.get(int(vertex))


@dataclass(frozen=True)
class ContourDefinition:
    """Candidate silhouette vertices and contour landmark identifiers for each face side."""
    right_vertices: tuple = ()
    left_vertices: tuple = ()
    right_landmarks: tuple = ()
    left_landmarks: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, 'right_vertices', tuple(int(v) for v in self.right_vertices))
        object.__setattr__(self, 'left_vertices', tuple(int(v) for v in self.left_vertices))
        object.__setattr__(self, 'right_landmarks', tuple(str(n) for n in self.right_landmarks))
        object.__setattr__(self, 'left_landmarks', tuple(str(n) for n in self.left_landmarks))

    def sides(self):
        """(side, landmark identifiers, candidate vertices) for the right and left side."""
        return (('right', self.right_landmarks, self.right_vertices),
                ('left', self.left_landmarks, self.left_vertices))

    @property
    def landmark_ids(self):
        return frozenset(self.right_landmarks) | frozenset(self.left_landmarks)

    def validate(self, num_vertices):
        for side, landmark_ids, vertices in self.sides():
            if any(v < 0 or v >= num_vertices for v in vertices):
                raise InvalidInput('The ' + side + ' contour references vertices outside the model')
            if landmark_ids and not vertices:
                raise InvalidInput('The ' + side + ' contour has landmarks but no candidate vertices')
