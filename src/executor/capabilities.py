"""
Capacités d'exécution — Le contrat entre le Router et les plateformes.

Le Router ne connaît PAS les SDK.
Il connaît ces interfaces : une méthode par action supportée,
qui reçoit les params et renvoie un ExecutionResult.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from models.action import ExecutionResult


Params = dict[str, Any]


@runtime_checkable
class NotionCapability(Protocol):
    async def create_task(self, params: Params) -> ExecutionResult: ...
    async def update_task(self, params: Params) -> ExecutionResult: ...
    async def add_comment(self, params: Params) -> ExecutionResult: ...


@runtime_checkable
class TrelloCapability(Protocol):
    async def create_card(self, params: Params) -> ExecutionResult: ...
    async def move_card(self, params: Params) -> ExecutionResult: ...
    async def add_checklist(self, params: Params) -> ExecutionResult: ...


@runtime_checkable
class SlackCapability(Protocol):
    async def send_message(self, params: Params) -> ExecutionResult: ...
    async def send_notification(self, params: Params) -> ExecutionResult: ...
    async def reply_in_thread(self, params: Params) -> ExecutionResult: ...


@runtime_checkable
class DriveCapability(Protocol):
    async def file_document(self, params: Params) -> ExecutionResult: ...
    async def organize_attachments(self, params: Params) -> ExecutionResult: ...
    async def move_file(self, params: Params) -> ExecutionResult: ...


@runtime_checkable
class SheetsCapability(Protocol):
    async def update_sheet(self, params: Params) -> ExecutionResult: ...
    async def log_action(self, params: Params) -> ExecutionResult: ...
    async def update_metrics(self, params: Params) -> ExecutionResult: ...


CAPABILITIES: dict[str, type] = {
    "notion": NotionCapability,
    "trello": TrelloCapability,
    "slack": SlackCapability,
    "drive": DriveCapability,
    "sheets": SheetsCapability,
}
