"""Core simulation models for the cryocooler.

Exports:
- model: single-node cold-stage simulator (CryoPlant)
"""

from .model import CryoPlant  # re-export
