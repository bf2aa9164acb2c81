############################################################
#
# switchyard - Messages API Translation Gateway
#
# conftest.py: Pytest configuration and shared test fixtures
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pytest configuration and shared fixtures for switchyard tests."""

from typing import Any, Dict

import pytest

from backend.app.settings import Settings
from backend.app.tests.helpers import make_settings


@pytest.fixture
def bare_settings() -> Settings:
    """Settings with no provider configured at all."""
    return make_settings()


@pytest.fixture
def settings() -> Settings:
    """Settings with every provider configured against fake hosts."""
    return make_settings(
        anthropic_api_key="sk-ant-test",
        anthropic_upstream_url="https://anthropic.test",
        glm_api_key="zai-test",
        glm_upstream_url="https://glm.test/api/anthropic",
        openai_api_key="sk-openai-test",
        openrouter_api_key="sk-or-test",
        gemini_api_key="gemini-test",
        ollama_base_url="http://ollama.test:11434",
    )


@pytest.fixture
def simple_request_body() -> Dict[str, Any]:
    """Minimal Messages API request."""
    return {
        "model": "openai:gpt-4o",
        "max_tokens": 256,
        "messages": [{"role": "user", "content": "Hello!"}],
    }


@pytest.fixture
def tool_conversation_body() -> Dict[str, Any]:
    """Messages API request with tools and a completed tool round trip."""
    return {
        "model": "gpt-4o",
        "max_tokens": 512,
        "system": [{"type": "text", "text": "You are a weather bot."}],
        "tools": [
            {
                "name": "get_weather",
                "description": "Current weather for a city",
                "input_schema": {
                    "$schema": "http://json-schema.org/draft-07/schema#",
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "city": {"type": "string", "format": "city-name"},
                        "default": {"type": "boolean", "default": False},
                    },
                    "required": ["city"],
                },
            }
        ],
        "tool_choice": {"type": "auto"},
        "messages": [
            {"role": "user", "content": "Weather in Moscow, Idaho?"},
            {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "Checking."},
                    {
                        "type": "tool_use",
                        "id": "toolu_01",
                        "name": "get_weather",
                        "input": {"city": "Moscow"},
                    },
                ],
            },
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "toolu_01", "content": "12C, rain"},
                    {"type": "text", "text": "Thanks"},
                ],
            },
        ],
    }


@pytest.fixture
def image_block() -> Dict[str, Any]:
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="},
    }
