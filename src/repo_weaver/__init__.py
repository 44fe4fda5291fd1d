"""Map a source tree, weave it into one text artifact, and recover JSON from model replies."""

__version__ = "0.1.0"
