"""
Product Verification Module
============================
Screens product listings before they go live. Two interchangeable
implementations behind one interface, ProductVerifier:

1. **RuleBasedVerifier** (default): deterministic checks on price,
   description, name, category and a denylist of suspicious claims.
   Pure function of the product, never raises.

2. **LLMVerifier**: sends the listing to a language model and parses a
   three-part answer (status line, notes, risk score line). Raises
   ExternalServiceError if the model cannot be reached.

build_verifier() picks one at startup; call sites only see the interface.
A rejected listing is a normal result, not an exception.
"""

import logging
import re
from abc import ABC, abstractmethod

from marketplace.schemas import Product, VerificationResult

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 20
HIGH_PRICE_THRESHOLD = 1000

# Claims that legitimate AI products don't make (matched case-insensitively
# as substrings of the description)
SUSPICIOUS_TERMS = [
    "guaranteed success", "guaranteed results", "guaranteed profit",
    "100% accuracy", "100% accurate", "never fails",
    "free money", "get rich quick", "instant profit",
    "hack", "bypass", "crack", "exploit",
    "illegal", "stolen", "pirated", "undetectable",
]

MEETS_REQUIREMENTS_NOTE = "Product meets all requirements for listing."
APPROVED_SUFFIX = "Approved with considerations."
REJECTED_SUFFIX = "Requires revision before approval."

DEFAULT_LLM_RISK_SCORE = 50

VERIFICATION_PROMPT = """You are an AI product verifier for an AI marketplace platform.
Your task is to analyze product listings and determine if they appear legitimate or potentially fraudulent.

Analyze the following product information and respond with:
1. A verification status: "approved" or "rejected"
2. Detailed notes explaining your decision
3. A risk score from 0-100 (0 being safest, 100 being highest risk)

Respond in exactly this layout:
Status: approved or rejected
Notes: your explanation (may span several lines)
Risk Score: number

Focus on these aspects:
- Realistic pricing for the type of AI product
- Clear and specific description of functionality
- Reasonable promises/claims about capabilities
- Professional presentation
- Appropriate categorization
"""


def clamp_risk(score: int) -> int:
    return max(0, min(100, score))


class ProductVerifier(ABC):
    """Capability interface: verify_product(product) -> VerificationResult."""

    name = "base"

    @abstractmethod
    def verify_product(self, product: Product) -> VerificationResult: ...


class RuleBasedVerifier(ProductVerifier):
    """
    Deterministic listing screen.

    Every rule runs; risk from each triggered rule accumulates and a
    rejection from any rule sticks.
    """

    name = "rules"

    def __init__(self, suspicious_terms: list[str] | None = None):
        self.suspicious_terms = SUSPICIOUS_TERMS if suspicious_terms is None else suspicious_terms

    def find_suspicious_terms(self, text: str | None) -> list[str]:
        lowered = (text or "").lower()
        return [term for term in self.suspicious_terms if term in lowered]

    def verify_product(self, product: Product) -> VerificationResult:
        risk_score = 0
        notes: list[str] = []
        rejected = False

        # ---------- PRICE ----------
        if product.price <= 0:
            rejected = True
            risk_score += 30
            notes.append("Price must be greater than zero.")
        elif product.price > HIGH_PRICE_THRESHOLD:
            risk_score += 15
            notes.append("Unusually high price; buyers may expect detailed justification.")

        # ---------- DESCRIPTION ----------
        if not product.description or len(product.description) < MIN_DESCRIPTION_LENGTH:
            rejected = True
            risk_score += 25
            notes.append(f"Description is too short (minimum {MIN_DESCRIPTION_LENGTH} characters).")

        # ---------- NAME ----------
        if not product.name or len(product.name) < MIN_NAME_LENGTH:
            rejected = True
            risk_score += 20
            notes.append(f"Product name is too short (minimum {MIN_NAME_LENGTH} characters).")

        # ---------- CATEGORY ----------
        if not product.category:
            risk_score += 10
            notes.append("No category selected; the listing will be harder to find.")

        # ---------- SUSPICIOUS CLAIMS ----------
        matched = self.find_suspicious_terms(product.description)
        if matched:
            rejected = True
            risk_score += 25
            notes.append(f"Description contains suspicious terms: {', '.join(matched)}.")

        status = "rejected" if rejected else "approved"

        if not notes:
            summary = MEETS_REQUIREMENTS_NOTE
        else:
            notes.append(REJECTED_SUFFIX if rejected else APPROVED_SUFFIX)
            summary = " ".join(notes)

        return VerificationResult(status=status, notes=summary, riskScore=clamp_risk(risk_score))


class LLMVerifier(ProductVerifier):
    """Delegates the judgement to a language model. Non-deterministic."""

    name = "llm"

    def __init__(self, llm_client):
        self.llm_client = llm_client

    @staticmethod
    def product_details(product: Product) -> str:
        tags = ", ".join(product.tags) if product.tags else "None"
        return (
            f"Name: {product.name}\n"
            f"Price: ${product.price}\n"
            f"Category: {product.category or 'None'}\n"
            f"Description: {product.description}\n"
            f"Tags: {tags}\n"
        )

    @staticmethod
    def parse_response(text: str) -> VerificationResult:
        """
        Parse the model's answer.

        First line decides the status ("approved" anywhere in it, else
        rejected), the lines in between are the notes, and the first
        integer on the last line is the risk score (50 if there is none).
        """
        lines = text.strip().split("\n")
        status = "approved" if "approved" in lines[0].lower() else "rejected"
        notes = "\n".join(lines[1:-1]).replace("Notes:", "").strip()

        match = re.search(r"\d+", lines[-1])
        risk_score = int(match.group()) if match else DEFAULT_LLM_RISK_SCORE

        return VerificationResult(status=status, notes=notes, riskScore=clamp_risk(risk_score))

    def verify_product(self, product: Product) -> VerificationResult:
        messages = [
            {"role": "system", "content": VERIFICATION_PROMPT},
            {"role": "user", "content": "Product details:\n" + self.product_details(product)}
        ]

        # ExternalServiceError propagates to the HTTP layer
        raw_output = self.llm_client.complete(messages, temperature=0.7)
        result = self.parse_response(raw_output)
        logger.info(f"[VERIFY] LLM verdict for product #{product.id}: {result.status} (risk {result.riskScore})")
        return result


def build_verifier(backend: str, llm_client=None) -> ProductVerifier:
    """
    Select the verifier implementation once, at startup.

    Args:
        backend: "rules" or "llm"
        llm_client: client with a `complete(messages, ...)` method, required for "llm"

    Raises:
        RuntimeError: unknown backend, or "llm" without a client
    """
    if backend == "rules":
        return RuleBasedVerifier()
    if backend == "llm":
        if llm_client is None:
            raise RuntimeError("LLM verifier requires an LLM client")
        return LLMVerifier(llm_client)
    raise RuntimeError(f"Unknown verifier backend: {backend!r}")


def run_verification(store, verifier: ProductVerifier, product: Product) -> tuple[Product, VerificationResult]:
    """
    Verify a stored product, persist the outcome and log it to the audit trail.

    Args:
        store: Any BaseStore
        verifier: The configured ProductVerifier
        product: Product as currently stored

    Returns:
        (updated product, verification result)

    Raises:
        ExternalServiceError: from the LLM verifier; nothing is persisted then
    """
    result = verifier.verify_product(product)

    updated = store.update_product(product.id, {
        "verificationStatus": result.status,
        "verificationNotes": result.notes,
    })
    store.add_verification_event(
        product.id, actor_id=None, automated=True,
        previous_status=product.verificationStatus, status=result.status,
        notes=result.notes, risk_score=result.riskScore,
    )

    logger.info(f"[VERIFY] Product #{product.id} {product.verificationStatus} -> {result.status} "
                f"via {verifier.name} (risk {result.riskScore})")
    return updated, result
