"""Supervisory controller for a Stirling-type cryocooler.

Subpackages:
- logic: controller state machine, detectors and planning (pure, no I/O)
- core: cold-stage plant model for dry runs
- cli: closed-loop simulation and scenario replay entry points
"""

__version__ = "0.1.0"
