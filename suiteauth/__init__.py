"""Authentication, session and authorization core for the suite API."""

__version__ = "0.3.0"
