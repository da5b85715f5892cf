"""
Status report text and inline keyboards shown to the chat.
"""

import os
from typing import Optional

from copilot_relay.state import ChatSession
from copilot_relay.transport.base import Button, Keyboard

DEFAULT_EMOJI = "🤖"
QUEUE_PREVIEW = 3

COMMAND_DESCRIPTIONS = [
    "/dirs - list available working directories",
    "/model [n] - show or select the AI model",
    "/status or /st - show the current session status",
    "/reset - restart the current assistant session",
    "/shutdown - stop the relay",
    "/help - show this message",
]


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def session_header(chat: Optional[ChatSession]) -> str:
    """`<emoji> Copilot ∙ <dir name>` marker prepended to relayed answers."""
    emoji = chat.emoji if chat and chat.emoji else DEFAULT_EMOJI
    if chat and chat.directory:
        return f"{emoji} Copilot ∙ {os.path.basename(chat.directory)}"
    return f"{emoji} Copilot"


def model_switch_row(chat: Optional[ChatSession], models: list[str], current: Optional[str]) -> list[Button]:
    row = [Button(text="🧠 Switch model", callback_data="cmd_model")]
    recent = chat.recent_models if chat else []
    for model in [m for m in recent if m != current][:2]:
        if model in models:
            short = model.replace("claude-", "").replace(".", "", 1)
            row.append(Button(text=f"⚡{short}", callback_data=f"set_model:{models.index(model)}"))
    return row


def welcome_keyboard(chat: Optional[ChatSession], models: list[str], default_model: str) -> Keyboard:
    current = chat.model if chat else default_model
    return [[Button(text="📂 Pick project", callback_data="cmd_dirs"), *model_switch_row(chat, models, current)]]


def session_keyboard(chat: ChatSession, models: list[str]) -> Keyboard:
    if chat.directory:
        return [[*model_switch_row(chat, models, chat.model), Button(text="🔄 Restart", callback_data="cmd_reset")]]
    return welcome_keyboard(chat, models, chat.model)


def selection_keyboard(labels: list[str], action: str, per_row: int = 2) -> Keyboard:
    """Numbered choice buttons, `per_row` to a row, with callback `<action>:<index>`."""
    buttons = [Button(text=label, callback_data=f"{action}:{i}") for i, label in enumerate(labels)]
    return [buttons[i:i + per_row] for i in range(0, len(buttons), per_row)]


def welcome_text(restart_info: Optional[str] = None) -> str:
    lines = []
    if restart_info:
        lines += [f"⏰ Started at: {restart_info}", ""]
    lines += [
        "Welcome to the Copilot relay!",
        "",
        "📋 Commands:",
        *COMMAND_DESCRIPTIONS,
        "",
        "Pick a working directory, then type a prompt and Copilot will work on it.",
        "Prompts sent while a task is running are queued.",
    ]
    return "\n".join(lines)


def render_status(
    chat: ChatSession,
    chat_label: Optional[str] = None,
    *,
    show_completion: bool = False,
) -> str:
    session_id = getattr(chat.session, "session_id", None) or getattr(chat.session, "id", None)
    queue = list(chat.prompt_queue)
    lines = []
    if show_completion:
        lines += ["🟢 This response is complete", ""]
    lines += [
        "🤖 Copilot session status",
        "",
        f"Chat: {chat_label or f'chatId: {chat.chat_id}'}",
        f"Process: {'running' if chat.session is not None else 'not started'}",
        f"Session: {session_id or ('unknown' if chat.session is not None else 'not started')}",
        f"Model: {chat.model}",
        f"Directory: {chat.directory or 'not set'}",
        f"Turns: {chat.turn_count}",
        f"Busy: {'yes' if chat.busy else 'no'}",
        f"Queue: {len(queue)} task(s)" if queue else "Queue: empty",
        f"Restarting: {'yes 🔄' if chat.resetting else 'no'}",
    ]
    if chat.busy and chat.current_prompt:
        lines += ["", "📝 Current task:", truncate(chat.current_prompt, 100)]
    if queue:
        lines += ["", "📋 Waiting:"]
        lines += [f"  {i}. {truncate(q, 50)}" for i, q in enumerate(queue[:QUEUE_PREVIEW], start=1)]
        if len(queue) > QUEUE_PREVIEW:
            lines.append(f"  ...and {len(queue) - QUEUE_PREVIEW} more")
    note = "Busy, please wait." if chat.busy else "Idle, send a new prompt any time!"
    lines += ["", f"Note: {note}"]
    return "\n".join(lines)
