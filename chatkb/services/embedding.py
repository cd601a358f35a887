import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from openai import APITimeoutError, AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field

from ..config import settings
from ..utils.vectors import zero_vector
from .tokens import ESTIMATE_CHARS_PER_TOKEN, estimate_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    max_input: int
    default_dimensions: int
    supported_dimensions: Tuple[int, ...]
    description: str
    cost_per_1k_tokens: float


EMBEDDING_MODELS: Dict[str, ModelInfo] = {
    "text-embedding-3-large": ModelInfo(
        8191, 3072, (256, 512, 1024, 1536, 3072),
        "Best quality, strong multilingual (incl. Arabic)", 0.00013,
    ),
    "text-embedding-3-small": ModelInfo(
        8191, 1536, (256, 512, 1024, 1536),
        "Fast and cost-effective, good for English", 0.00002,
    ),
    "text-embedding-ada-002": ModelInfo(
        8191, 1536, (1536,),
        "Legacy model, fixed dimensions", 0.0001,
    ),
}

# These reject the `dimensions` request parameter
FIXED_DIMENSION_MODELS = frozenset({"text-embedding-ada-002"})


class EmbeddingConfigurationError(Exception):
    """No embedding credential configured while running in strict mode"""
    pass


class EmbeddingBackendFailure(Exception):
    """The embedding API call failed (network, auth, rate limit...)"""
    def __init__(self, model: str, message: str):
        self.model = model
        super().__init__(f"Embedding backend error with {model}: {message}")


class EmbeddingTimeout(EmbeddingBackendFailure):
    pass


class DimensionMismatch(Exception):
    """Requested dimensions are not in the model's supported set"""
    def __init__(self, model: str, dimensions: int):
        self.model = model
        self.dimensions = dimensions
        supported = EMBEDDING_MODELS[model].supported_dimensions if model in EMBEDDING_MODELS else ()
        super().__init__(f"Dimensions {dimensions} not supported for {model} (supported: {list(supported)})")


class EmbeddingConfig(BaseModel):
    model: str = Field(default_factory=lambda: settings.EMBED_MODEL)
    dimensions: int = Field(default_factory=lambda: settings.EMBED_DIM, gt=0)
    # unknown chatbot-level knobs, passed through untouched
    extra: Dict[str, Any] = Field(default_factory=dict)


def get_model_info(model: str) -> ModelInfo:
    try:
        return EMBEDDING_MODELS[model]
    except KeyError:
        raise ValueError(f"Unknown embedding model: {model}. Supported: {sorted(EMBEDDING_MODELS)}") from None


def validate_dimensions(model: str, dimensions: int) -> bool:
    return dimensions in get_model_info(model).supported_dimensions


def exceeds_max_input(text: str, model: str) -> bool:
    return estimate_tokens(text) > get_model_info(model).max_input


def truncate_to_max_input(text: str, model: str) -> str:
    """Cut text to the model's input budget, on a word boundary when one is near."""
    max_chars = get_model_info(model).max_input * ESTIMATE_CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    truncated = text[:max_chars]
    last_space = truncated.rfind(" ")
    return truncated[:last_space] if last_space > max_chars * 0.8 else truncated


def config_from_chatbot(chatbot_config: Optional[Dict[str, Any]]) -> EmbeddingConfig:
    """Read the embedding settings stored in a chatbot's config blob."""
    kb = dict((chatbot_config or {}).get("knowledgeBase") or {})
    model = kb.pop("embeddingModel", None) or settings.EMBED_MODEL
    dimensions = kb.pop("embeddingDimensions", None) or settings.EMBED_DIM
    return EmbeddingConfig(model=model, dimensions=int(dimensions), extra=kb)


class EmbeddingGenerator:
    """Turns texts into vectors through an injected AsyncOpenAI client.

    Without a client (no OPENAI_API_KEY) the generator runs degraded and returns
    zero vectors, unless strict is set.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        *,
        api_key: Optional[str] = None,
        default_config: Optional[EmbeddingConfig] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        strict: Optional[bool] = None,
        dimension_policy: Optional[str] = None,
    ):
        self.timeout = settings.EMBED_TIMEOUT if timeout is None else timeout
        api_key = settings.OPENAI_API_KEY if api_key is None else api_key
        if client is None and api_key:
            client = AsyncOpenAI(api_key=api_key, timeout=self.timeout)
        self.client = client
        self.default_config = default_config or EmbeddingConfig()
        self.batch_size = batch_size or settings.EMBED_BATCH_SIZE
        self.batch_delay = settings.EMBED_BATCH_DELAY if batch_delay is None else batch_delay
        self.strict = settings.EMBED_STRICT if strict is None else strict
        self.dimension_policy = (dimension_policy or settings.EMBED_DIMENSION_POLICY).lower()

    @property
    def is_degraded(self) -> bool:
        return self.client is None

    def _resolve(self, config: Optional[EmbeddingConfig]) -> Tuple[str, int]:
        config = config or self.default_config
        model, dimensions = config.model, config.dimensions
        if not validate_dimensions(model, dimensions):
            if self.dimension_policy == "strict":
                raise DimensionMismatch(model, dimensions)
            logger.warning("%s; continuing with %d", DimensionMismatch(model, dimensions), dimensions)
        return model, dimensions

    def _degraded(self, count: int) -> None:
        if self.strict:
            raise EmbeddingConfigurationError(
                "OPENAI_API_KEY is not set. Configure it or disable EMBED_STRICT."
            )
        logger.warning("Embedding credential not configured; returning %d zero vector(s)", count)

    @staticmethod
    def _params(model: str, dimensions: int, inputs: List[str]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"model": model, "input": inputs}
        if model not in FIXED_DIMENSION_MODELS:
            params["dimensions"] = dimensions
        return params

    async def _call(self, model: str, params: Dict[str, Any]) -> List[List[float]]:
        try:
            resp = await asyncio.wait_for(self.client.embeddings.create(**params), timeout=self.timeout)
        except (asyncio.TimeoutError, APITimeoutError) as e:
            raise EmbeddingTimeout(model, f"timed out after {self.timeout}s") from e
        except OpenAIError as e:
            raise EmbeddingBackendFailure(model, str(e)) from e

        items = sorted(resp.data, key=lambda d: getattr(d, "index", 0))
        if len(items) != len(params["input"]):
            raise EmbeddingBackendFailure(
                model, f"expected {len(params['input'])} embeddings, got {len(items)}"
            )
        return [list(d.embedding) for d in items]

    async def create_embedding(self, text: str, config: Optional[EmbeddingConfig] = None) -> List[float]:
        model, dimensions = self._resolve(config)
        if self.is_degraded:
            self._degraded(1)
            return zero_vector(dimensions)
        vectors = await self._call(model, self._params(model, dimensions, [truncate_to_max_input(text, model)]))
        return vectors[0]

    async def create_embeddings(self, texts: List[str], config: Optional[EmbeddingConfig] = None) -> List[List[float]]:
        """Embed texts in sub-batches of batch_size, keeping input order."""
        model, dimensions = self._resolve(config)
        if not texts:
            return []
        if self.is_degraded:
            self._degraded(len(texts))
            return [zero_vector(dimensions) for _ in texts]

        out: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = [truncate_to_max_input(t, model) for t in texts[start:start + self.batch_size]]
            out.extend(await self._call(model, self._params(model, dimensions, batch)))
            logger.debug("Embedded %d/%d texts with %s", len(out), len(texts), model)
            if start + self.batch_size < len(texts):
                await asyncio.sleep(self.batch_delay)
        return out
