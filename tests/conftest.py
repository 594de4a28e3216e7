"""Synthetic face model: an ellipsoid cap with a random orthonormal PCA basis.

Vertex (i, j) sits at latitude row i (bottom to top) and longitude column j
(from x < 0 to x > 0), with index i * N_LON + j. Column 0 is the right side of
the face as seen in the image's left half, column N_LON - 1 the left side.
"""
import numpy as np
import pytest

from facefit.camera import CameraParameters
from facefit.model import Blendshape, BlendshapeSet, ContourDefinition, LandmarkMapping, ShapeModel

N_LAT = 13
N_LON = 17
RADII = (70.0, 90.0, 60.0)
NUM_COEFFICIENTS = 10
NUM_BLENDSHAPES = 6
IMAGE_WIDTH = 640
IMAGE_HEIGHT = 480

# ibug style: 1-8 right contour, 9 chin, 10-17 left contour, 18-68 inner face
RIGHT_CONTOUR_LANDMARKS = [str(i) for i in range(1, 9)]
LEFT_CONTOUR_LANDMARKS = [str(i) for i in range(10, 18)]
CONTOUR_ROWS = list(range(2, 10))


def vertex_index(i, j):
    return i * N_LON + j


def _ellipsoid_cap():
    lat = np.radians(np.linspace(-60.0, 60.0, N_LAT))
    lon = np.radians(np.linspace(-80.0, 80.0, N_LON))
    lon_grid, lat_grid = np.meshgrid(lon, lat)
    a, b, c = RADII
    vertices = np.stack((a * np.cos(lat_grid) * np.sin(lon_grid),
                         b * np.sin(lat_grid),
                         c * np.cos(lat_grid) * np.cos(lon_grid)), axis=-1).reshape(-1, 3)
    triangles = []
    for i in range(N_LAT - 1):
        for j in range(N_LON - 1):
            v00 = vertex_index(i, j)
            v01 = vertex_index(i, j + 1)
            v11 = vertex_index(i + 1, j + 1)
            v10 = vertex_index(i + 1, j)
            triangles.append((v00, v01, v11))
            triangles.append((v00, v11, v10))
    u = np.tile(np.arange(N_LON) / (N_LON - 1.0), N_LAT)
    v = 1.0 - np.repeat(np.arange(N_LAT) / (N_LAT - 1.0), N_LON)
    return vertices, np.array(triangles), np.stack((u, v), axis=1)


@pytest.fixture(scope='session')
def shape_model():
    vertices, triangles, texcoords = _ellipsoid_cap()
    rng = np.random.default_rng(7)
    basis, _ = np.linalg.qr(rng.standard_normal((vertices.size, NUM_COEFFICIENTS)))
    return ShapeModel(mean=vertices.ravel(), basis=basis, stddev=np.linspace(20.0, 4.0, NUM_COEFFICIENTS),
                      triangles=triangles, texcoords=texcoords)


@pytest.fixture(scope='session')
def blendshapes(shape_model):
    rng = np.random.default_rng(11)
    return BlendshapeSet([Blendshape('expression_' + str(k), 0.8 * rng.standard_normal(shape_model.mean.size))
                          for k in range(NUM_BLENDSHAPES)])


@pytest.fixture(scope='session')
def landmark_mapping():
    """Chin '9' and 51 inner landmarks '18'-'68' on interior vertices."""
    rng = np.random.default_rng(3)
    interior = [vertex_index(i, j) for i in range(2, N_LAT - 2) for j in range(4, N_LON - 4)]
    inner = rng.choice(interior, size=51, replace=False)
    mappings = {'9': vertex_index(0, N_LON // 2)}
    mappings.update({str(18 + k): int(v) for k, v in enumerate(inner)})
    return LandmarkMapping(mappings)


@pytest.fixture(scope='session')
def contour():
    right = [vertex_index(i, j) for i in range(N_LAT) for j in (0, 1)]
    left = [vertex_index(i, j) for i in range(N_LAT) for j in (N_LON - 1, N_LON - 2)]
    return ContourDefinition(right_vertices=right, left_vertices=left,
                             right_landmarks=RIGHT_CONTOUR_LANDMARKS, left_landmarks=LEFT_CONTOUR_LANDMARKS)


@pytest.fixture(scope='session')
def frontal_camera():
    return CameraParameters(np.eye(3), np.array([IMAGE_WIDTH / 3.0, IMAGE_HEIGHT / 3.0]), 1.5,
                            IMAGE_WIDTH, IMAGE_HEIGHT)


@pytest.fixture(scope='session')
def observe(landmark_mapping):
    """Function (mesh, camera, with_contour=True) -> noiseless landmarks of the mesh seen by the camera.

    Contour landmarks are the projections of the outermost column vertices.
    """
    def _observe(mesh, camera, with_contour=True):
        projected = camera.project(mesh.vertices)
        landmarks = {name: projected[vertex] for name, vertex in landmark_mapping.mappings.items()}
        if with_contour:
            for name, row in zip(RIGHT_CONTOUR_LANDMARKS, CONTOUR_ROWS):
                landmarks[name] = projected[vertex_index(row, 0)]
            for name, row in zip(LEFT_CONTOUR_LANDMARKS, CONTOUR_ROWS):
                landmarks[name] = projected[vertex_index(row, N_LON - 1)]
        return landmarks
    return _observe
