
"""PySide6 client glue for the looplace task engines.

This package is a *client* of the headless core:

- Core stays UI-agnostic (no Qt imports under `looplace/`).
- Controllers here own an engine, turn its schedule requests into Qt
  single-shot timers, and forward main-run summaries to the store.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
