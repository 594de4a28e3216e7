"""Fitting of a 3D morphable face model to sparse 2D landmarks."""
from facefit.camera import CameraParameters, ProjectionType, estimate_camera
from facefit.errors import FittingError, InsufficientConstraints, InvalidInput, SingularSystem
from facefit.fitting import FitIteration, FitResult, fit_shape_and_pose
from facefit.model import (Blendshape, BlendshapeSet, ContourDefinition, EdgeTopology, Landmark,
                           LandmarkMapping, Mesh, ShapeModel, generate_mesh)
from facefit.settings import FittingSettings
from facefit.texture import extract_texture

__version__ = '0.1.0'
