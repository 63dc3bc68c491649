"""agrb — rewrite a branch's history onto a new base (cherry-pick replay or linear rebase)."""
from __future__ import annotations

__version__ = "0.4.0"
