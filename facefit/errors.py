"""Errors raised while fitting a morphable model to landmarks.

Every error carries the step that failed and, where it applies, the number of
correspondences that step had available, so callers can log or retry with
adjusted inputs.
"""


class FittingError(Exception):
    def __init__(self, message, step=None, num_correspondences=None, iteration=None):
        super().__init__(message)
        self.step = step
        self.num_correspondences = num_correspondences
        self.iteration = iteration

    def __str__(self):
        message = super().__str__()
        context = []
        if self.step is not None:
            context.append('step=' + str(self.step))
        if self.iteration is not None:
            context.append('iteration=' + str(self.iteration))
        if self.num_correspondences is not None:
            context.append('correspondences=' + str(self.num_correspondences))
        if context:
            return message + ' (' + ', '.join(context) + ')'
        return message


class InsufficientConstraints(FittingError):
    """Too few non-degenerate correspondences for the camera model."""


class SingularSystem(FittingError):
    """A regularized linear system could not be solved."""


class InvalidInput(FittingError):
    """Inputs are inconsistent, detected before any fitting starts."""
