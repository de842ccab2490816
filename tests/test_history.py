"""Tests for history sanitization before replay."""

from conductor.conversations.models import (
    AssistantMessage,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from conductor.llm.history import TextTurn, annotate_tool_calls, sanitize_history


def test_tool_turns_collapse_to_text() -> None:
    history = [
        UserMessage(content="open my notes and the calendar"),
        AssistantMessage(
            content="On it.",
            tool_calls=[
                ToolCall(id="call_old_1", name="open_app", arguments='{"app": "notes"}'),
                ToolCall(id="call_old_2", name="open_app", arguments='{"app": "calendar"}'),
            ],
        ),
        ToolResultMessage(tool_call_id="call_old_1", name="open_app", content="opened"),
        ToolResultMessage(tool_call_id="call_old_2", name="open_app", content="opened"),
        AssistantMessage(content="Both are open."),
    ]

    turns = sanitize_history(history)

    assert turns == [
        TextTurn("user", "open my notes and the calendar"),
        TextTurn("assistant", "On it. [called tool: open_app] [called tool: open_app]"),
        TextTurn("assistant", "Both are open."),
    ]
    assert not any("call_old" in t.content for t in turns)


def test_annotation_without_text() -> None:
    message = AssistantMessage(tool_calls=[ToolCall(id="c", name="take_screenshot")])
    assert annotate_tool_calls(message) == "[called tool: take_screenshot]"


def test_empty_assistant_text_dropped() -> None:
    turns = sanitize_history([UserMessage(content="hi"), AssistantMessage(content="")])
    assert turns == [TextTurn("user", "hi")]
