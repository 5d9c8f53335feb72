"""
Actionflow Services — Briques partagées.

UNE config, UN format de log, partagés partout.

Modules :
  - config.py      → Settings centralisés (.env → Pydantic)
  - log_setup.py   → Handler JSON / texte du logger "actionflow"
  - utils.py       → Dates UTC, durées en ms
"""

from services.config import Settings, get_settings
from services.log_setup import configure_logging

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
]
