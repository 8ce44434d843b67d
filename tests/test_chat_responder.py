import pytest

from marketplace.core.chat_responder import (
    EMPTY_COMPLETION_REPLY, LLMResponder, RuleBasedResponder, build_responder,
)
from marketplace.errors import ExternalServiceError

from conftest import StubLLMClient

responder = RuleBasedResponder()


@pytest.mark.parametrize("question, rule", [
    ("How do I sell my model?", "selling"),
    ("HOW can I purchase a chatbot?", "buying"),
    ("What does verification involve?", "verification"),
    ("Can I request a custom project?", "projects"),
    ("Can I message the author directly?", "messaging"),
    ("Is there a listing fee?", "pricing"),
    ("When does the waitlist open?", "waitlist"),
    ("hey there", "greeting"),
])
def test_questions_route_to_expected_rule(question, rule):
    assert responder.match(question)[0] == rule


def test_first_matching_rule_wins():
    # mentions both selling and buying; selling is evaluated first
    assert responder.match("how do I buy and sell models")[0] == "selling"


def test_greeting_needs_a_whole_word():
    # "this" contains "hi" but is not a greeting
    assert responder.match("this is odd") is None


def test_fallback_echoes_the_question():
    answer = responder.answer("Tell me about quantum widgets")
    assert "Tell me about quantum widgets" in answer
    assert "I can help with" in answer


def test_llm_responder_returns_completion_verbatim():
    llm = StubLLMClient(reply="Listings are reviewed within a day.")
    assert LLMResponder(llm).answer("how long is review?") == "Listings are reviewed within a day."
    system, user = llm.calls[0]
    assert system["role"] == "system"
    assert user == {"role": "user", "content": "how long is review?"}


def test_llm_responder_apologises_on_empty_completion():
    assert LLMResponder(StubLLMClient(reply="")).answer("anything") == EMPTY_COMPLETION_REPLY


def test_llm_responder_surfaces_failures(llm_unavailable):
    with pytest.raises(ExternalServiceError):
        LLMResponder(llm_unavailable).answer("anything")


def test_build_responder():
    assert isinstance(build_responder("rules"), RuleBasedResponder)
    assert isinstance(build_responder("llm", StubLLMClient()), LLMResponder)
    with pytest.raises(RuntimeError):
        build_responder("nope")
