"""Exceptions raised by the benchmark scheduler."""


class HpcaBenchError(RuntimeError):
    """Base class for every fatal error of an invocation."""


class PreconditionError(HpcaBenchError):
    """A check done before building any experiment failed."""


class ConfigurationError(PreconditionError):
    """The configuration file is missing, unreadable or invalid."""


class RunDirectoryError(HpcaBenchError):
    """The run directory could not be created."""


class SubmissionError(HpcaBenchError):
    """The experiment set could not be handed over to the job manager."""


class ReportError(HpcaBenchError):
    """Results could not be parsed, rendered or written."""
