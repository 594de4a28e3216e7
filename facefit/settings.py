"""Fitting options, optionally read from the [fitting] table of a TOML file.

Example::

    [fitting]
    num_iterations = 5
    regularization = 30.0
    num_shape_coefficients = 10
    projection = "affine"
"""
import numbers
from dataclasses import asdict, dataclass
from typing import Optional

import toml

from facefit.camera import ProjectionType
from facefit.errors import InvalidInput

EXPRESSION_SOLVERS = ('linear', 'nnls')


def _is_count(value):
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


@dataclass(frozen=True)
class FittingSettings:
    num_iterations: int = 5
    regularization: float = 30.0
    expression_regularization: Optional[float] = None
    num_shape_coefficients: Optional[int] = None
    projection: ProjectionType = ProjectionType.AFFINE
    fov_y: Optional[float] = None
    expression_solver: str = 'linear'

    def __post_init__(self):
        projection = self.projection
        if not isinstance(projection, ProjectionType):
            try:
                projection = ProjectionType(str(projection).lower())
            except ValueError as exc:
                raise InvalidInput('Unknown projection ' + repr(self.projection)) from exc
            object.__setattr__(self, 'projection', projection)
        if self.fov_y is not None:
            if projection is not ProjectionType.PERSPECTIVE:
                raise InvalidInput('A field of view only applies to a perspective projection')
            if not 0.0 < self.fov_y < 180.0:
                raise InvalidInput('Field of view must be in (0, 180) degrees, got ' + str(self.fov_y))
        if not _is_count(self.num_iterations) or self.num_iterations < 1:
            raise InvalidInput('num_iterations must be a positive integer, got ' + str(self.num_iterations))
        if not self.regularization > 0:
            raise InvalidInput('regularization must be positive, got ' + str(self.regularization))
        if self.expression_regularization is not None and not self.expression_regularization > 0:
            raise InvalidInput('expression_regularization must be positive, got '
                               + str(self.expression_regularization))
        if self.num_shape_coefficients is not None and (not _is_count(self.num_shape_coefficients)
                                                        or self.num_shape_coefficients < 1):
            raise InvalidInput('num_shape_coefficients must be a positive integer, got ' + str(self.num_shape_coefficients))
        if self.expression_solver not in EXPRESSION_SOLVERS:
            raise InvalidInput('expression_solver must be one of ' + str(EXPRESSION_SOLVERS))

    @property
    def expression_lambda(self):
        if self.expression_regularization is None:
            return self.regularization
        return self.expression_regularization

    def to_dict(self):
        values = asdict(self)
        values['projection'] = self.projection.value
        return {k: v for k, v in values.items() if v is not None}

    @classmethod
    def from_dict(cls, values):
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            raise InvalidInput('Unknown fitting options: ' + ', '.join(sorted(unknown)))
        return cls(**values)


def load_settings(path):
    """FittingSettings from the [fitting] table of a TOML file, defaults for missing keys."""
    try:
        config = toml.load(path)
    except toml.TomlDecodeError as exc:
        raise InvalidInput('Could not parse fitting settings ' + str(path) + ': ' + str(exc)) from exc
    return FittingSettings.from_dict(config.get('fitting', {}))


def save_settings(settings, path):
    with open(path, 'w') as f:
        toml.dump({'fitting': settings.to_dict()}, f)
