"""Prompt templates for the planning assistant.

Each endpoint picks its own template; nothing here inspects message content to
choose one. Builders return ``(system_prompt, messages)`` ready for
:class:`app.services.chat_client.ChatClient`.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.api.schemas.planning import ChatMessage, PlanningGoal

SENDABLE_ROLES = {"user", "assistant", "system"}

NO_GOALS_CONTEXT = (
    "The user has not set up any goals yet. Help them think through what tomorrow could hold "
    "and encourage them to create a goal so future plans have something to build on."
)

PLANNER_RULES = (
    "### RULES\n"
    "- You plan TOMORROW only; nothing in this conversation happens right now.\n"
    "- Never tell the user to \"go do\" something or \"start now\", and never say you will wait for them.\n"
    "- Never behave as if the user is executing tasks during this chat.\n"
    "- The agreed plan is saved and run tomorrow in a focused timer session.\n"
    "- Ground suggestions in the goals, milestones and open checkpoints above.\n"
    "- Favour open checkpoints on the milestones closest to completion.\n\n"
    "### PROPOSING A SCHEDULE\n"
    "- Lay the day out in time blocks (e.g. \"09:00 - 10:30: Draft chapter outline\").\n"
    "- Give every block a clear title and a one-line description of the work.\n"
    "- Use realistic estimates and include breaks.\n"
    "- Keep the day to 6-10 productive hours.\n"
    "- Before proposing a full schedule, ask about tomorrow: wake-up time, working hours, priorities.\n\n"
    "Keep every response concise."
)

FINALIZE_SYSTEM_PROMPT = (
    "From the planning conversation, extract the final daily schedule the user agreed to for tomorrow.\n\n"
    "Return ONLY a JSON array shaped like this (no prose, no markdown fences):\n"
    "[\n"
    "  {\n"
    "    \"title\": \"Task title\",\n"
    "    \"description\": \"What to do during this block\",\n"
    "    \"startTime\": \"09:00\",\n"
    "    \"endTime\": \"10:30\",\n"
    "    \"estimatedMins\": 90\n"
    "  }\n"
    "]\n\n"
    "### FIELD RULES\n"
    "- \"title\" is a short task name.\n"
    "- \"description\" is one or two actionable sentences.\n"
    "- \"startTime\" and \"endTime\" use 24-hour HH:MM.\n"
    "- \"estimatedMins\" is an integer number of minutes.\n"
    "- Order entries by startTime.\n"
    "- Include breaks if the conversation discussed them."
)

FINALIZE_REQUEST = "Please extract the final daily schedule we agreed on as a JSON array only, with no other text."

DISCUSS_RULES = (
    "### HOW TO COACH\n"
    "- Help the user split the goal into 3-6 concrete subgoals, each finishable on its own.\n"
    "- Ask about available time, deadline and current experience before committing to a breakdown.\n"
    "- Give every subgoal a short title, one sentence of scope and a rough duration in days.\n"
    "- When the user is happy, restate the final list so it can be saved.\n\n"
    "Keep every response concise."
)

SUBGOALS_SYSTEM_PROMPT = (
    "From the conversation, extract the final list of subgoals the user agreed to.\n\n"
    "Return ONLY a JSON array shaped like this (no prose, no markdown fences):\n"
    "[\n"
    "  {\"title\": \"Subgoal title\", \"description\": \"One sentence of scope\", \"estimatedDays\": 14}\n"
    "]\n\n"
    "\"estimatedDays\" is an integer; keep the order the conversation settled on."
)

SUBGOALS_REQUEST = "Please extract the subgoals we agreed on as a JSON array only, with no other text."


def render_goals_context(goals: Sequence[PlanningGoal]) -> str:
    """Describe goals, milestones and checkpoints as plain text."""
    if not goals:
        return NO_GOALS_CONTEXT

    blocks: List[str] = []
    for goal in goals:
        lines = [f"Goal: {goal.title}", f"Progress: {goal.progress or 0}%"]
        if not goal.milestones:
            lines.append("  No milestones yet")
        for milestone in goal.milestones:
            lines.append(f"  Milestone: {milestone.title}")
            if not milestone.checklist:
                lines.append("    No checkpoints")
            for item in milestone.checklist:
                mark = "x" if item.done else " "
                lines.append(f"    - [{mark}] {item.text}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def build_suggest_prompt(
    goals: Sequence[PlanningGoal],
    history: Sequence[ChatMessage],
    user_preferences: Optional[str] = None,
) -> Tuple[str, List[Dict[str, str]]]:
    system_prompt = (
        "You are an AI daily planner. Your only job is to help the user build a schedule for TOMORROW; "
        "you are not a real-time coach.\n\n"
        "### CURRENT GOALS\n"
        f"{render_goals_context(goals)}\n\n"
        f"{PLANNER_RULES}"
    )
    messages = conversation_messages(history)
    if not messages:
        opener = "Please suggest what I should work on tomorrow, considering my goals and priorities."
        if user_preferences:
            opener += f"\n\nMy preferences: {user_preferences}"
        messages.append({"role": "user", "content": opener})
    return system_prompt, messages


def build_tweak_prompt(
    current_plan: Any,
    user_request: str,
    history: Sequence[ChatMessage],
) -> Tuple[str, List[Dict[str, str]]]:
    system_prompt = (
        "You are an AI daily planner. The user wants to change tomorrow's schedule.\n\n"
        "### CURRENT PLAN\n"
        f"{json.dumps(current_plan, indent=2, ensure_ascii=False)}\n\n"
        "### ADJUSTING\n"
        "- Follow the user's request and stay flexible.\n"
        "- Point out trade-offs (\"more time on X means less on Y\") when time runs short.\n"
        "- Keep the day to 6-10 productive hours.\n\n"
        "Reply with the full updated schedule."
    )
    messages = conversation_messages(history)
    messages.append({"role": "user", "content": user_request})
    return system_prompt, messages


def build_finalize_prompt(history: Sequence[ChatMessage]) -> Tuple[str, List[Dict[str, str]]]:
    messages = conversation_messages(history)
    messages.append({"role": "user", "content": FINALIZE_REQUEST})
    return FINALIZE_SYSTEM_PROMPT, messages


def build_discuss_prompt(goal: str, history: Sequence[ChatMessage]) -> Tuple[str, List[Dict[str, str]]]:
    system_prompt = (
        "You are an AI goal coach helping the user turn a big objective into achievable subgoals.\n\n"
        f"### OBJECTIVE\n{goal.strip()}\n\n"
        f"{DISCUSS_RULES}"
    )
    messages = conversation_messages(history)
    if not messages:
        messages.append(
            {
                "role": "user",
                "content": f'I want to achieve this goal: "{goal.strip()}". '
                "Can you help me break it down into manageable subgoals?",
            }
        )
    return system_prompt, messages


def build_subgoals_prompt(goal: str, history: Sequence[ChatMessage]) -> Tuple[str, List[Dict[str, str]]]:
    system_prompt = f"{SUBGOALS_SYSTEM_PROMPT}\n\n### OBJECTIVE\n{goal.strip()}"
    messages = conversation_messages(history)
    messages.append({"role": "user", "content": SUBGOALS_REQUEST})
    return system_prompt, messages


def conversation_messages(history: Sequence[ChatMessage]) -> List[Dict[str, str]]:
    """Convert chat history to SDK messages, skipping UI-only roles such as ``error``."""
    return [
        {"role": message.role, "content": message.content}
        for message in history
        if message.role in SENDABLE_ROLES
    ]
