"""OT Assurance Twin: reconcile engineering baselines against OT network discovery."""

__version__ = "0.3.0"
