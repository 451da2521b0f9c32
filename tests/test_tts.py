"""
Tests: Text normalization and speech synthesis client (core/tts.py)
"""

import pytest
import requests

from core.tts import SpeechClip, SynthesisError, TextNormalizer, TextToSpeech, TTSConfig


class FakeResponse:
    def __init__(self, status_code=200, content=b"RIFFdata"):
        self.status_code = status_code
        self.content = content


@pytest.fixture
def post(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        if post.error is not None:
            raise post.error
        return post.response

    post = fake_post
    post.calls = calls
    post.response = FakeResponse()
    post.error = None
    monkeypatch.setattr(requests, "post", fake_post)
    return fake_post


# =============================================================================
# Normalizer
# =============================================================================

@pytest.mark.parametrize("text,expected", [
    ("Dr. Smith has 25% battery & 3 cats", "Doctor Smith has twenty five percent battery and three cats"),
    ("It costs $5, e.g. a coffee", "It costs five dollars, for example a coffee"),
    ("It's 20°C outside", "It's twenty degrees Celsius outside"),
    ("**Bold** and `code`", "Bold and code"),
    ("Year 1234 stays", "Year 1234 stays"),
    ('She said "hi"', "She said hi"),
    ("   ", ""),
])
def test_normalize(text, expected):
    assert TextNormalizer.normalize(text) == expected


@pytest.mark.parametrize("text,expected", [
    ("Hmph! Tch, whatever.", "Humf! Chuh, whatever."),
    ("hmmph", "hmmf"),
    ("HMMMPH", "HMMMF"),
    ("pfft, such a tsundere", "pift, such a tsoon-deh-reh"),
    ("hmm, let me think", "hmm, let me think"),
    ("watch the match", "watch the match"),
])
def test_convert_expressions(text, expected):
    assert TextNormalizer.convert_expressions(text) == expected


@pytest.mark.parametrize("n,words", [
    (0, "zero"), (7, "seven"), (13, "thirteen"), (40, "forty"), (42, "forty two"),
    (100, "one hundred"), (115, "one hundred fifteen"), (999, "nine hundred ninety nine"),
])
def test_number_to_words(n, words):
    assert TextNormalizer._number_to_words(n) == words


# =============================================================================
# Synthesis
# =============================================================================

def test_synthesize(post):
    tts = TextToSpeech(TTSConfig(base_url="http://tts:8880/", voice="nova", speed=1.1, api_key="k"))
    result = tts.synthesize("I have 2 ideas")

    assert result == SpeechClip(b"RIFFdata", "I have two ideas")
    url, kwargs = post.calls[0]
    assert url == "http://tts:8880/v1/audio/speech"
    assert kwargs["json"] == {
        "model": "tts-1",
        "input": "I have two ideas",
        "voice": "nova",
        "response_format": "wav",
        "speed": 1.1,
    }
    assert kwargs["headers"]["Authorization"] == "Bearer k"
    assert tts.get_stats()["syntheses"] == 1


def test_synthesize_without_normalizing(post):
    result = TextToSpeech().synthesize("3 cats", normalize=False)
    assert result.text == "3 cats"


def test_nothing_to_synthesize(post):
    assert TextToSpeech().synthesize("**") == SynthesisError("Nothing to synthesize")
    assert post.calls == []


def test_network_error(post):
    post.error = requests.Timeout("timed out")
    assert TextToSpeech().synthesize("hello") == SynthesisError("Network error: timed out")


def test_api_error(post):
    post.response = FakeResponse(status_code=503)
    tts = TextToSpeech()
    assert tts.synthesize("hello") == SynthesisError("API error: 503")
    assert tts.get_stats()["errors"] == 1


def test_empty_audio(post):
    post.response = FakeResponse(content=b"")
    assert TextToSpeech().synthesize("hello") == SynthesisError("Empty audio from speech service")
