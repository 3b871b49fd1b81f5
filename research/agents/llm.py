"""Thin async wrapper around Ollama structured-output chat calls."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, TypeVar

import ollama
from pydantic import BaseModel

from research.core.project_spec import LLMSettings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


@asynccontextmanager
async def llm_session(
    settings: LLMSettings,
    client: Optional[ollama.AsyncClient] = None,
) -> AsyncIterator[ollama.AsyncClient]:
    """Yield ``client`` as-is, or open one for the block and close it on exit."""
    if client is not None:
        yield client
        return
    async with ollama.AsyncClient(host=settings.host) as owned:
        yield owned


async def chat_json(
    prompt: str,
    system: str,
    schema: type[T],
    *,
    model: str,
    settings: LLMSettings,
    client: Optional[ollama.AsyncClient] = None,
) -> T:
    """Send one prompt and parse the reply into ``schema``.

    Raises on transport errors, timeouts and invalid JSON; callers decide
    what the fallback value is. Without ``client`` a one-off connection is
    opened and closed around the call.
    """
    async with llm_session(settings, client) as session:
        response = await asyncio.wait_for(
            session.chat(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                format=schema.model_json_schema(),
                options={"temperature": settings.temperature},
                think=False,
            ),
            timeout=settings.timeout,
        )

    raw = response.message.content or ""
    logger.debug("%s reply (%d chars) for %s", model, len(raw), schema.__name__)
    return schema.model_validate_json(raw)
