"""Exception hierarchy for compiling, serializing and encoding programs."""


class CompileError(Exception):
    """Base class for every error raised by the package."""


class DeserializeError(CompileError):
    """A serialized program blob could not be read."""


class IntegrityError(CompileError):
    """A checksum did not match the data it protects."""


class ConfigError(CompileError):
    """A configuration value is unusable."""


class DecodeError(CompileError):
    """Encoded text could not be turned back into bytes."""