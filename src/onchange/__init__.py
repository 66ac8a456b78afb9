"""onchange: run commands when watched files change."""

__version__ = "0.3.0"

# Public API
from onchange.controller import OnchangeController

__all__ = [
    "__version__",
    "OnchangeController",
]
