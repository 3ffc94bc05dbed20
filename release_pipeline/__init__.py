"""Release orchestration for the command-line frontend and its core library."""

__version__ = "0.1.0"
