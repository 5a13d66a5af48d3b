"""Qiskit Fall Fest referral program backend."""

__version__ = "0.1.0"
