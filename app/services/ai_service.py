from typing import List, Optional

from app.config import settings
from app.logging_config import get_logger
from app.services.llm import LLMError, LLMProvider, OpenAIProvider
from app.services.result import Result
from app.services.training_engine import Rule

logger = get_logger("ai_service")

BASE_SYSTEM_PROMPT = "Você é um assistente inteligente de atendimento via WhatsApp."

RESPONSE_RULES = """Regras:
- Seja profissional, cordial e objetivo
- Responda de forma clara e direta
- Use o contexto fornecido para dar respostas precisas
- Se não souber algo, seja honesto e ofereça ajuda"""

FALLBACK_RESPONSE = "Desculpe, não consegui processar sua mensagem."


def build_llm_provider() -> OpenAIProvider:
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        default_model=settings.openai_model,
        base_url=settings.openai_base_url,
    )


def build_system_prompt(rule: Rule) -> str:
    """System prompt carrying the active training's content."""
    context = (rule.content or "").strip() or rule.name
    return f"{BASE_SYSTEM_PROMPT} Use as seguintes informações para responder:\n\n=== {rule.name} ===\n{context}\n\n{RESPONSE_RULES}"


async def generate_reply(
    llm: LLMProvider,
    rule: Rule,
    history: List[dict],
    user_message: str,
    *,
    history_window: Optional[int] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> Result[str]:
    """Ask the LLM for a reply under the given training."""
    window = settings.history_window if history_window is None else history_window
    recent = history[-window:] if window > 0 else []

    try:
        content = await llm.complete(
            build_system_prompt(rule),
            recent,
            user_message,
            temperature=settings.llm_temperature if temperature is None else temperature,
            max_tokens=settings.llm_max_tokens if max_tokens is None else max_tokens,
        )
    except LLMError as e:
        logger.error(f"LLM call failed for training {rule.id}: {e}")
        return Result.failure(str(e), "llm_error")

    content = (content or "").strip()
    if not content:
        logger.warning(f"Empty LLM response for training {rule.id}, using fallback")
        content = FALLBACK_RESPONSE
    return Result.success(content)
