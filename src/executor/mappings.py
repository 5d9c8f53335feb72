"""
Table statique (action, target) → méthode d'exécution.

Ajouter une action = ajouter une ligne ici + la méthode sur la capacité.
"""

from __future__ import annotations

from models.action import ActionMapping, FieldRule


def _m(action: str, target: str, method: str, *fields: tuple[str, str]) -> ActionMapping:
    return ActionMapping(
        action=action,
        target=target,
        executor_method=method,
        required_fields=[FieldRule(name=name, kind=kind) for name, kind in fields],
    )


ACTION_MAPPINGS: list[ActionMapping] = [
    # Notion
    _m("create_task", "notion", "create_task", ("title", "str")),
    _m("update_task", "notion", "update_task", ("page_id", "str"), ("updates", "dict")),
    _m("add_comment", "notion", "add_comment", ("page_id", "str"), ("comment", "str")),

    # Trello
    _m("create_task", "trello", "create_card", ("title", "str")),
    _m("move_card", "trello", "move_card", ("card_id", "str"), ("list_id", "str")),
    _m("add_checklist", "trello", "add_checklist", ("card_id", "str"), ("items", "list")),

    # Slack
    _m("send_notification", "slack", "send_notification", ("message", "str")),
    _m("send_message", "slack", "send_message", ("channel", "str"), ("message", "str")),
    _m("reply_in_thread", "slack", "reply_in_thread", ("thread_ts", "str"), ("message", "str")),

    # Drive
    _m("file_document", "drive", "file_document", ("name", "str")),
    _m("organize_attachments", "drive", "organize_attachments", ("attachments", "list")),
    _m("move_file", "drive", "move_file", ("file_id", "str"), ("folder_id", "str")),

    # Sheets
    _m("update_sheet", "sheets", "update_sheet", ("spreadsheet_id", "str"), ("values", "list")),
    _m("log_action", "sheets", "log_action", ("spreadsheet_id", "str")),
    _m("update_metrics", "sheets", "update_metrics", ("spreadsheet_id", "str")),
]


def build_mapping_index(
    mappings: list[ActionMapping] | None = None,
) -> dict[tuple[str, str], ActionMapping]:
    index: dict[tuple[str, str], ActionMapping] = {}
    for mapping in mappings if mappings is not None else ACTION_MAPPINGS:
        if mapping.key in index:
            raise ValueError(f"Duplicate action mapping: {mapping.action}:{mapping.target}")
        index[mapping.key] = mapping
    return index
