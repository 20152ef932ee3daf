"""
Dossier Kernel - workflow and validation core

A case-management core for LLC-formation dossiers with:
- Per-field and per-document review state
- Step instance state machine with a server-side approval gate
- Rejection, correction and resubmission loop
- Append-only event log
- Explicit caller identity on every mutating call
"""

__version__ = "0.1.0"
