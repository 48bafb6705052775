from __future__ import annotations

from typing import Any, Dict, Optional

from langchain_openai import ChatOpenAI
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.output_parsers import StrOutputParser


class LLMClient:
    """Centralized LLM client using LangChain. Errors propagate to the caller."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: Optional[float] = None,
        max_retries: int = 0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries

    def _make_llm(self, temperature: float, max_tokens: Optional[int] = None) -> ChatOpenAI:
        kwargs: Dict[str, Any] = {
            "api_key": self.api_key,
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
        }
        if self.base_url:
            kwargs["base_url"] = self.base_url
        return ChatOpenAI(**kwargs)

    def _string_chain(self, messages, temperature: float, max_tokens: Optional[int]):
        llm = self._make_llm(temperature=temperature, max_tokens=max_tokens)
        return ChatPromptTemplate.from_messages(messages) | llm | StrOutputParser()

    async def generate_text(self, prompt: str, temperature: float = 0.7, max_tokens: Optional[int] = None) -> str:
        """Single user message in, plain text out."""
        chain = self._string_chain([("user", "{prompt}")], temperature, max_tokens)
        return await chain.ainvoke({"prompt": prompt})

    async def analyze_with_context(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
    ) -> str:
        """System + user messages in, plain text out. Used by the reranker."""
        chain = self._string_chain(
            [("system", "{system_prompt}"), ("user", "{user_prompt}")], temperature, max_tokens
        )
        return await chain.ainvoke({"system_prompt": system_prompt, "user_prompt": user_prompt})
