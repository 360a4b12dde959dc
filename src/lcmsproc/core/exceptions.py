"""lcmsproc core exceptions."""


class ConfigError(ValueError):
    """Exception raised when an invalid parameter is passed to an operator."""


class FeatureNotFound(ValueError):
    """Exception raised when a feature is not found in an assay."""


class InsufficientAnchors(ValueError):
    """Exception raised when a retention time correction cannot be fitted due to the lack of hook peaks."""


class MalformedDataError(ValueError):
    """Exception raised when raw data cannot be processed, e.g. unsorted scan times."""


class PeakNotFound(ValueError):
    """Exception raised when a peak is not found in a peak table."""


class PipelineConfigurationError(ValueError):
    """Exception raised when operators in a pipeline are not sorted in a valid processing order."""


class ProcessStatusError(ValueError):
    """Exception raised when an action cannot be performed on data due to incorrect processing status."""


class ReaderNotFound(ValueError):
    """Exception raised when a reader is not found for a specific format."""


class RegistryError(ValueError):
    """Exception raised when an entry is not found in a registry."""


class RepeatedIdError(ValueError):
    """Exception raised when trying to add a resource with an existing id."""


class SampleNotFound(ValueError):
    """Exception raised when a sample is not found in an assay or in a spectrum source."""


class SampleProcessorError(ValueError):
    """Exception raised when sample processing fails for all samples in an assay."""


class SpectrumReadError(OSError):
    """Exception raised when raw data cannot be read from a spectrum source."""
