"""Account lifecycle service: deferred deletion, restoration, sweeping and OAuth unlink safety."""

__version__ = "0.1.0"
