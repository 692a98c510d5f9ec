"""Shared fixtures for agent and API tests."""

import pytest

from legalchat.schemas.chat import Message


@pytest.fixture
def system_message() -> Message:
    return Message(role="system", content="You are a polish legal assistant.")


@pytest.fixture
def conversation(system_message: Message) -> list[Message]:
    """System prompt, one earlier exchange, and the current question."""
    return [
        system_message,
        Message(role="user", content="Co to jest wykroczenie?"),
        Message(role="assistant", content="Wykroczenie to czyn zabroniony."),
        Message(role="user", content="What is the penalty for X?"),
    ]
