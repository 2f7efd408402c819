"""Error taxonomy for a scout mission.

Only ``FatalError`` ends a run; everything else is handled at the level of a
single target, candidate or event.
"""


class ScoutError(Exception):
    """Base class for pipeline errors."""


class NavigationError(ScoutError):
    """A target page failed to load or its selector never appeared."""


class ParseFailure(ScoutError):
    """No title and date could be derived from a candidate."""


class GeocodeFailure(ScoutError):
    """A geocode resolver errored instead of answering."""


class UploadFailure(ScoutError):
    """The external API rejected an event."""


class FatalError(ScoutError):
    """Failure before any target starts, e.g. the browser did not launch."""
