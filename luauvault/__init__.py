"""Program blob serialization, keyed text encoding and a Luau VM dispatcher."""

__version__ = "0.1.0"

__all__ = [
    "blob",
    "checksum",
    "dispatcher",
    "encoder",
    "errors",
    "program",
]