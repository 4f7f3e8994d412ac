"""
nexus-compliance — package root.

File: src/nexus_compliance/__init__.py

Purpose
- Package root for the configuration compliance control loop: validate a
  candidate configuration, enforce it on runtime components, detect drift and
  periodically re-converge.

Import boundary rules
- Must not have side effects at import time (no config loading, no logging init).
- Keep the public surface small; subpackages expose their own APIs.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
