"""Exception hierarchy for the proximity correction pipeline.

Every error carries the name of the pipeline stage it was raised in so that
a failed run can report which step aborted.
"""

from typing import Optional


class ProximityCorrectionError(Exception):
    """Base class for all errors raised by the package."""

    default_stage = 'pipeline'

    def __init__(self, message: str, stage: Optional[str] = None):
        self.stage = stage or self.default_stage
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class ConfigurationError(ProximityCorrectionError):
    """Invalid or inconsistent configuration option."""

    default_stage = 'configuration'


class GeometryError(ProximityCorrectionError):
    """Missing, empty or malformed input geometry."""

    default_stage = 'geometry'


class PSFError(ProximityCorrectionError):
    """Invalid point-spread function descriptor or unreadable PSF file."""

    default_stage = 'psf'


class FractureError(ProximityCorrectionError):
    """Fracturing could not meet the vertex cap within the allowed retries."""

    default_stage = 'fracture'


class OutputError(ProximityCorrectionError):
    """Writing the corrected geometry or the dose report failed."""

    default_stage = 'output'
