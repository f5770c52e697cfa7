"""
Error taxonomy for the mood search pipeline.

InvalidInputError is raised internally and degraded into zero vectors or
empty results at the public entry points. ModelLoadError propagates to the
caller. StoreReadError is degraded into an empty result set by the engine.
"""


class MoodSearchError(Exception):
    """Base class for all pipeline errors."""


class InvalidInputError(MoodSearchError):
    """Missing or zero-dimension image, or a non-numeric query coordinate."""


class ModelLoadError(MoodSearchError):
    """The feature-extraction network could not be loaded."""


class StoreReadError(MoodSearchError):
    """The record collection could not be read from the store."""
