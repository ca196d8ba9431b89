class SegframeError(Exception):
    """Base class for every error raised by the segmentation pipeline."""


class AllocationError(SegframeError):
    """Device memory exhausted or an invalid buffer size was requested."""


class ConversionError(SegframeError):
    """Input frame is empty, malformed or in an unsupported format."""


class InferenceError(SegframeError):
    """The inference engine failed to load or to run a forward pass."""


class PostProcessError(SegframeError):
    """Invalid target dimensions, bad output buffer, or no class map yet."""


class LifecycleError(SegframeError):
    """Use after shutdown/release, or concurrent re-entry into process()."""
