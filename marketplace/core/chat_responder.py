"""
Chat Responder Module
======================
Answers free-text questions from the marketplace help widget.

RuleBasedResponder: ordered keyword predicates. The predicates overlap
                    (a question can mention both selling and buying), so
                    the first match in RULES wins and the order matters.
LLMResponder:       forwards the question to a language model with a
                    fixed system prompt and returns its text verbatim.
"""

import logging
import re
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

CHATBOT_PROMPT = """You are a helpful AI assistant for an AI marketplace platform where users can buy, sell, and request custom AI programs.
Your role is to:
1. Help users understand how the platform works
2. Assist with technical questions about AI products
3. Guide users through the buying/selling process
4. Explain platform policies and features
5. Provide general AI/ML knowledge

Keep responses friendly, concise, and focused on helping users achieve their goals."""

EMPTY_COMPLETION_REPLY = "I apologize, but I am unable to provide an answer at this moment."

GREETING_WORDS = {"hello", "hi", "hey", "greetings", "howdy"}


def _has(text: str, *terms: str) -> bool:
    return any(term in text for term in terms)


# (name, predicate over lower-cased text, answer). Evaluated top to bottom.
RULES = [
    (
        "selling",
        lambda t: _has(t, "how") and _has(t, "sell"),
        "To sell an AI product, sign in and open your dashboard, then choose \"List a product\". "
        "Give it a clear name, a description of at least 20 characters, a price and a category. "
        "Every listing goes through verification before buyers see it as approved.",
    ),
    (
        "buying",
        lambda t: _has(t, "how") and _has(t, "buy", "purchase"),
        "Browse the marketplace or filter by category, open a product to read its details and "
        "verification status, then contact the seller through direct messages to arrange the purchase.",
    ),
    (
        "verification",
        lambda t: _has(t, "verification", "verify", "verified"),
        "Listings are screened for realistic pricing, a clear description and misleading claims "
        "such as \"guaranteed success\" or \"100% accuracy\". Each check adds to a risk score from "
        "0 to 100, and listings that fail a check must be revised before approval.",
    ),
    (
        "projects",
        lambda t: _has(t, "project") and _has(t, "custom", "request"),
        "Need something built? Use \"Request a project\" to describe what you need, your "
        "requirements, an optional budget range and deadline. Sellers can then reach out to you.",
    ),
    (
        "messaging",
        lambda t: _has(t, "message", "contact", "chat with"),
        "You can message any seller or buyer from their product or project page. Open the Messages "
        "page to see all your conversations; unread messages are highlighted until you open them.",
    ),
    (
        "pricing",
        lambda t: _has(t, "price", "pricing", "cost", "fee"),
        "Sellers set their own prices. Listings priced above 1000 are flagged for extra review but "
        "can still be approved. Creating an account and listing products is free.",
    ),
    (
        "waitlist",
        lambda t: _has(t, "waitlist", "wait list", "early access"),
        "Join the waitlist with your email on the home page to get early access and, if you opt in, "
        "our newsletter. Each email can only be registered once.",
    ),
    (
        "greeting",
        lambda t: bool(GREETING_WORDS & set(re.findall(r"[a-z]+", t))),
        "Hello! I'm the marketplace assistant. Ask me how to buy or sell AI products, how verification "
        "works, or how to request a custom project.",
    ),
]


def fallback_answer(message: str) -> str:
    return (
        f"I'm not sure how to answer \"{message.strip()}\". I can help with selling AI products, buying, "
        "product verification, custom project requests, messaging, pricing, and the waitlist. "
        "Could you rephrase your question?"
    )


class ChatResponder(ABC):
    """Capability interface: answer(message) -> str."""

    name = "base"

    @abstractmethod
    def answer(self, message: str) -> str: ...


class RuleBasedResponder(ChatResponder):
    name = "rules"

    def match(self, message: str) -> tuple[str, str] | None:
        """(rule name, reply) of the first rule matching the message, or None."""
        lowered = message.lower()
        for name, predicate, reply in RULES:
            if predicate(lowered):
                return name, reply
        return None

    def answer(self, message: str) -> str:
        matched = self.match(message)
        if matched is None:
            logger.info("[CHAT] No rule matched, using fallback")
            return fallback_answer(message)
        logger.info(f"[CHAT] Matched rule '{matched[0]}'")
        return matched[1]


class LLMResponder(ChatResponder):
    name = "llm"

    def __init__(self, llm_client):
        self.llm_client = llm_client

    def answer(self, message: str) -> str:
        messages = [
            {"role": "system", "content": CHATBOT_PROMPT},
            {"role": "user", "content": message}
        ]
        completion = self.llm_client.complete(messages, temperature=0.7)
        return completion or EMPTY_COMPLETION_REPLY


def build_responder(backend: str, llm_client=None) -> ChatResponder:
    """Select the chatbot implementation once, at startup."""
    if backend == "rules":
        return RuleBasedResponder()
    if backend == "llm":
        if llm_client is None:
            raise RuntimeError("LLM responder requires an LLM client")
        return LLMResponder(llm_client)
    raise RuntimeError(f"Unknown chat backend: {backend!r}")
