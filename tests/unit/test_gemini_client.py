"""Tests for the Gemini wrapper with the SDK replaced by a fake."""

import dataclasses
from types import SimpleNamespace

import pytest

from campus_assistant import gemini_client
from campus_assistant.errors import GenerativeTextError
from campus_assistant.gemini_client import GeminiClient


class FakeModel:
    def __init__(self, name, outcome):
        self.name = name
        self.outcome = outcome
        self.calls = []

    def generate_content(self, prompt, generation_config=None, safety_settings=None):
        self.calls.append((prompt, generation_config, safety_settings))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return SimpleNamespace(text=self.outcome)


@pytest.fixture
def fake_genai(monkeypatch):
    state = {"outcome": "  Hello there  ", "models": [], "api_key": None}

    def configure(api_key):
        state["api_key"] = api_key

    def generative_model(name):
        model = FakeModel(name, state["outcome"])
        state["models"].append(model)
        return model

    monkeypatch.setattr(
        gemini_client, "genai", SimpleNamespace(configure=configure, GenerativeModel=generative_model)
    )
    return state


@pytest.fixture
def gemini_settings(settings):
    return dataclasses.replace(settings, gemini_api_key="test-key", gemini_model="models/gemini-2.0-flash")


def test_requires_api_key(settings, fake_genai):
    """Test a missing key is rejected."""
    with pytest.raises(ValueError):
        GeminiClient(settings)


def test_generate_text(gemini_settings, fake_genai):
    """Test prompts are sent with generation and safety settings."""
    client = GeminiClient(gemini_settings)

    assert client.generate_text("hi") == "Hello there"
    model = fake_genai["models"][0]
    assert fake_genai["api_key"] == "test-key"
    assert model.name == "gemini-2.0-flash"
    prompt, config, safety = model.calls[0]
    assert prompt == "hi"
    assert config == {"temperature": 0.7, "max_output_tokens": 1024}
    assert safety == gemini_client.DEFAULT_SAFETY_SETTINGS


def test_sdk_error_is_wrapped(gemini_settings, fake_genai):
    """Test SDK exceptions surface as GenerativeTextError."""
    fake_genai["outcome"] = RuntimeError("quota")
    client = GeminiClient(gemini_settings)

    with pytest.raises(GenerativeTextError) as excinfo:
        client.generate_text("hi")
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_empty_text_is_an_error(gemini_settings, fake_genai):
    """Test blank output is not returned as a reply."""
    fake_genai["outcome"] = "   "
    client = GeminiClient(gemini_settings)

    with pytest.raises(GenerativeTextError):
        client.generate_text("hi")
