"""lampctl — resumable LAMP + WordPress provisioning."""

__version__ = "0.1.0"
