"""
Static model registry.

The set of models the gateway will accept is fixed at build time. Chat and
embedding models live in separate tables, but validation is a membership
test against both.

Pricing is carried for display; every model is free on this deployment.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PROVIDER = "NextGenAI"

# Unix timestamp reported as `created` in the models list.
_MODELS_CREATED = 1677610602


@dataclass(frozen=True, slots=True)
class Pricing:
    """Per-1M-token prices in USD."""

    input: float = 0
    output: float = 0


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    id: str
    name: str
    provider: str
    description: str = ""
    context_length: int | None = None
    pricing: Pricing = field(default_factory=Pricing)

    def to_openai(self) -> dict:
        """Render as an entry of an OpenAI-style /models list."""
        return {
            "id": self.id,
            "object": "model",
            "created": _MODELS_CREATED,
            "owned_by": self.provider.lower(),
            "name": self.name,
            "description": self.description,
            "context_length": self.context_length,
            "pricing": {"input": self.pricing.input, "output": self.pricing.output},
        }


# ── Registry ────────────────────────────────────────────────
AVAILABLE_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="ai/gpt-oss-20b",
        name="GPT OSS 20B",
        provider=PROVIDER,
        description="Flagship 20B parameter open source GPT model with advanced reasoning capabilities",
        context_length=32768,
    ),
    ModelDescriptor(
        id="ai/gpt-oss-7b",
        name="GPT OSS 7B",
        provider=PROVIDER,
        description="Efficient 7B parameter model optimized for speed and performance",
        context_length=16384,
    ),
    ModelDescriptor(
        id="ai/gpt-oss-3b",
        name="GPT OSS 3B",
        provider=PROVIDER,
        description="Lightweight 3B parameter model for fast inference and low latency",
        context_length=8192,
    ),
    ModelDescriptor(
        id="ai/gpt-oss-instruct",
        name="GPT OSS Instruct",
        provider=PROVIDER,
        description="Instruction-tuned model specialized for following complex instructions",
        context_length=16384,
    ),
    ModelDescriptor(
        id="ai/gpt-oss-code",
        name="GPT OSS Code",
        provider=PROVIDER,
        description="Code-specialized model trained on programming languages and documentation",
        context_length=24576,
    ),
)

EMBEDDING_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="ai/embed-large",
        name="NextGenAI Embed Large",
        provider=PROVIDER,
        description="High-dimensional embeddings for complex semantic understanding",
    ),
    ModelDescriptor(
        id="ai/embed-small",
        name="NextGenAI Embed Small",
        provider=PROVIDER,
        description="Efficient embeddings optimized for speed and resource usage",
    ),
)

_BY_ID: dict[str, ModelDescriptor] = {
    m.id: m for m in (*AVAILABLE_MODELS, *EMBEDDING_MODELS)
}


def all_models() -> list[ModelDescriptor]:
    return list(_BY_ID.values())


def get_model_by_id(model_id: str) -> ModelDescriptor | None:
    return _BY_ID.get(model_id)


def is_valid_model(model_id: object) -> bool:
    """False for anything that is not a registered id, including non-strings."""
    return isinstance(model_id, str) and get_model_by_id(model_id) is not None


def valid_model_ids() -> list[str]:
    """Every accepted id, chat models first, in registry order."""
    return list(_BY_ID)

