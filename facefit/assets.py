"""Readers for landmark files and model metadata.

Formats follow the files shipped with the eos Surrey Face Model:
 - ibug .pts landmark files (1-based pixel coordinates),
 - the TOML landmark mapping with [landmark_mappings] and [contour_landmarks],
 - the JSON model contour ({"model_contour": {"right_contour": [...], ...}}).

Binary models, edge topology and OBJ export go through eos, see facefit.eos_interop.
"""
import json

import numpy as np
import toml

from facefit.errors import InvalidInput
from facefit.model import ContourDefinition, Landmark, LandmarkMapping


def read_pts_landmarks(filename):
    """Landmarks '1', '2', ... from an ibug .pts file, shifted to 0-based pixel coordinates."""
    landmarks = []
    with open(filename) as f:
        lines = [line.strip() for line in f]
    try:
        start = lines.index('{') + 1
    except ValueError as exc:
        raise InvalidInput('Landmark file ' + str(filename) + ' has no opening brace') from exc
    for line in lines[start:]:
        if line == '}':
            break
        if not line:
            continue
        try:
            x, y = (float(v) for v in line.split()[:2])
        except ValueError as exc:
            raise InvalidInput('Landmark format error while parsing the line: ' + line) from exc
        # ibug annotations use the Matlab convention, the top-left pixel is (1, 1)
        landmarks.append(Landmark(str(len(landmarks) + 1), np.array([x - 1.0, y - 1.0])))
    return landmarks


def load_landmark_mapping(filename):
    """LandmarkMapping from the [landmark_mappings] table of a TOML mapping file."""
    try:
        config = toml.load(filename)
    except toml.TomlDecodeError as exc:
        raise InvalidInput('Could not parse landmark mapping ' + str(filename) + ': ' + str(exc)) from exc
    if 'landmark_mappings' not in config:
        raise InvalidInput('Landmark mapping ' + str(filename) + ' has no [landmark_mappings] table')
    return LandmarkMapping(config['landmark_mappings'])


def load_contour_landmarks(filename):
    """(right, left) contour landmark identifiers from the [contour_landmarks] table of a mapping file."""
    try:
        config = toml.load(filename)
    except toml.TomlDecodeError as exc:
        raise InvalidInput('Could not parse contour landmarks ' + str(filename) + ': ' + str(exc)) from exc
    contour = config.get('contour_landmarks', {})
    right = [str(name) for name in contour.get('right', [])]
    left = [str(name) for name in contour.get('left', [])]
    return right, left


def load_model_contour(filename):
    """(right, left) candidate contour vertex indices from a model contour JSON file."""
    with open(filename) as f:
        try:
            model_contour = json.load(f)['model_contour']
            return model_contour['right_contour'], model_contour['left_contour']
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidInput('Could not read model contour from ' + str(filename)) from exc


def load_contour_definition(mapping_filename, model_contour_filename):
    right_landmarks, left_landmarks = load_contour_landmarks(mapping_filename)
    right_vertices, left_vertices = load_model_contour(model_contour_filename)
    return ContourDefinition(right_vertices=right_vertices, left_vertices=left_vertices,
                             right_landmarks=right_landmarks, left_landmarks=left_landmarks)
