"""Error kinds raised by the retrieval core.

Validation problems derive from ``ValueError`` and numerical or lifecycle
problems from ``RuntimeError`` so callers catching the builtin types keep
working.
"""


class PatchRetrievalError(Exception):
    """Base class for every error raised by patch_retrieval."""


class InvalidInput(PatchRetrievalError, ValueError):
    """Patches or arguments handed to the controller are unusable."""


class UnlabeledPatch(PatchRetrievalError, ValueError):
    """A patch that must carry a relevance label is still unlabeled."""


class InvalidTrainingData(PatchRetrievalError, ValueError):
    """The training set cannot produce a binary classifier."""


class ModelNotTrained(PatchRetrievalError, RuntimeError):
    """Classification was requested before any successful training."""


class ClassifierFailure(PatchRetrievalError, RuntimeError):
    """Fitting, scoring or kernel evaluation failed numerically."""


class DiversitySelectionMismatch(PatchRetrievalError, RuntimeError):
    """Kernel k-means could not produce the requested distinct representatives."""


__all__ = [
    'PatchRetrievalError',
    'InvalidInput',
    'UnlabeledPatch',
    'InvalidTrainingData',
    'ModelNotTrained',
    'ClassifierFailure',
    'DiversitySelectionMismatch',
]
