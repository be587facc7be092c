"""Live tutoring session coordination: signaling relay and peer lifecycle."""

__version__ = "0.1.0"
