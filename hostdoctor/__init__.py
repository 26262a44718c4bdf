"""hostdoctor: single-machine health scan, remediation and rollback."""

__version__ = "0.3.0"
