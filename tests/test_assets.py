"""Tests for the landmark, mapping and contour file readers."""

import json

import numpy as np
import pytest

from facefit import assets
from facefit.errors import InvalidInput


MAPPING_TOML = """
[landmark_mappings]
# 1 to 8 are the right contour landmarks
9 = 33
31 = 114
37 = 177

[contour_landmarks]
right = [ 1, 2, 3, 4, 5, 6, 7, 8 ]
left = [ 10, 11, 12, 13, 14, 15, 16, 17 ]
"""


def test_read_pts_landmarks(tmp_path):
    path = tmp_path / 'image_0010.pts'
    path.write_text('version: 1\nn_points: 3\n{\n10.5 20.0\n1 1\n\n300 200.25\n}\n')
    landmarks = assets.read_pts_landmarks(str(path))
    assert [lm.name for lm in landmarks] == ['1', '2', '3']
    np.testing.assert_array_equal(landmarks[0].coordinates, [9.5, 19.0])
    np.testing.assert_array_equal(landmarks[1].coordinates, [0.0, 0.0])
    np.testing.assert_array_equal(landmarks[2].coordinates, [299.0, 199.25])


def test_read_pts_landmarks_malformed(tmp_path):
    path = tmp_path / 'bad.pts'
    path.write_text('version: 1\n{\n10.5 abc\n}\n')
    with pytest.raises(InvalidInput):
        assets.read_pts_landmarks(str(path))
    path.write_text('10 20\n')
    with pytest.raises(InvalidInput):
        assets.read_pts_landmarks(str(path))


def test_load_landmark_mapping(tmp_path):
    path = tmp_path / 'ibug_to_sfm.txt'
    path.write_text(MAPPING_TOML)
    mapping = assets.load_landmark_mapping(str(path))
    assert len(mapping) == 3
    assert mapping.convert('31') == 114
    assert mapping.convert(9) == 33
    assert mapping.convert('1') is None
    assert mapping.landmark_for_vertex(177) == '37'


def test_load_landmark_mapping_without_table(tmp_path):
    path = tmp_path / 'empty.toml'
    path.write_text('[something_else]\na = 1\n')
    with pytest.raises(InvalidInput):
        assets.load_landmark_mapping(str(path))


def test_load_contour_definition(tmp_path):
    mapping = tmp_path / 'ibug_to_sfm.txt'
    mapping.write_text(MAPPING_TOML)
    model_contour = tmp_path / 'sfm_model_contours.json'
    model_contour.write_text(json.dumps({'model_contour': {'right_contour': [380, 373, 356],
                                                           'left_contour': [795, 790, 802]}}))
    contour = assets.load_contour_definition(str(mapping), str(model_contour))
    assert contour.right_landmarks == ('1', '2', '3', '4', '5', '6', '7', '8')
    assert contour.left_landmarks[0] == '10'
    assert contour.right_vertices == (380, 373, 356)
    assert contour.left_vertices == (795, 790, 802)


def test_load_model_contour_malformed(tmp_path):
    path = tmp_path / 'contour.json'
    path.write_text('{"contour": []}')
    with pytest.raises(InvalidInput):
        assets.load_model_contour(str(path))


def test_load_model_contour_missing_side(tmp_path):
    path = tmp_path / 'contour.json'
    path.write_text(json.dumps({'model_contour': {'right_contour': [1, 2]}}))
    with pytest.raises(InvalidInput):
        assets.load_model_contour(str(path))


def test_load_contour_landmarks_malformed(tmp_path):
    path = tmp_path / 'ibug_to_sfm.txt'
    path.write_text('[contour_landmarks]\nright = [ 1, 2\n')
    with pytest.raises(InvalidInput):
        assets.load_contour_landmarks(str(path))
