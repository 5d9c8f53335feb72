"""
Logging — Un handler, un format, pour tout le pipeline.

Tous les loggers vivent sous "actionflow.*".
JSON en production (python-json-logger), texte lisible en local.
"""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from services.config import Settings, get_settings


ROOT_LOGGER = "actionflow"

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


class PipelineJsonFormatter(JsonFormatter):
    """JSON formatter qui n'émet que les champs renseignés."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        for key in [k for k, v in log_record.items() if v is None]:
            del log_record[key]


def configure_logging(settings: Settings | None = None) -> logging.Logger:
    """
    Installe le handler stdout sur le logger racine du pipeline.

    Idempotent : les handlers précédents sont remplacés.
    """
    settings = settings or get_settings()

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(
            PipelineJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(settings.log_level)
    root.handlers = [handler]
    root.propagate = False
    return root
