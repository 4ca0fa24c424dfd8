"""Asynchronous generation-job orchestration for third-party media providers"""

__version__ = "0.1.0"
