class RetinexError(Exception):
    """Base class for every error raised by the Retinex pipeline."""


class InvalidArgument(RetinexError, ValueError):
    """Threshold, target range or buffer shape outside its domain."""


class AllocationFailure(RetinexError, MemoryError):
    """A working buffer (spectrum, histogram, tables) could not be allocated."""


class DegenerateInput(RetinexError, ValueError):
    """Input that cannot be normalized, e.g. a zero-variance channel."""


class TransformFailure(RetinexError, RuntimeError):
    """The cosine transform capability reported an error."""
