"""AI 生成代理

通过 OpenAI 兼容接口调用 xAI Grok。调用带并发限制、指数退避重试，
且整体受 ai_request_timeout 约束；任何失败都抛出 AgentError，
由推荐流程转入回退逻辑。
"""

import asyncio
import logging
import time
from typing import Optional, Protocol

from openai import AsyncOpenAI

from concierge.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "あなたは家電・ガジェット選びの専門コンシェルジュです。"
    "必ず指定されたJSON形式のみで回答してください。"
)


class AgentError(Exception):
    """AI 调用失败（超时、网络错误、空响应等）"""


class GenerationAgent(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class GrokGenerationAgent:
    """基于 xAI Grok 的生成代理"""

    # 同一事件循环内共享的并发控制
    _semaphore: Optional[asyncio.Semaphore] = None
    _semaphore_loop: Optional[asyncio.AbstractEventLoop] = None

    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """延迟初始化客户端"""
        if self._client is None:
            if not self.settings.grok_api_key:
                raise AgentError("GROK_API_KEY is not configured")
            self._client = AsyncOpenAI(
                api_key=self.settings.grok_api_key,
                base_url=self.settings.ai_base_url,
                # 重试由本类控制
                max_retries=0,
            )
        return self._client

    @classmethod
    def _get_semaphore(cls, limit: int) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if cls._semaphore is None or cls._semaphore_loop is not loop:
            cls._semaphore = asyncio.Semaphore(limit)
            cls._semaphore_loop = loop
        return cls._semaphore

    async def generate(self, prompt: str) -> str:
        """
        调用模型并返回原始文本

        Raises:
            AgentError: 调用失败或超过总超时时间
        """
        started = time.monotonic()
        try:
            async with self._get_semaphore(self.settings.ai_max_concurrency):
                return await asyncio.wait_for(
                    self._generate_with_retry(prompt),
                    timeout=self.settings.ai_request_timeout,
                )
        except asyncio.TimeoutError as e:
            logger.warning(f"Grok request timed out after {self.settings.ai_request_timeout}s")
            raise AgentError("generation timed out") from e
        finally:
            logger.info(f"Grok generation finished in {time.monotonic() - started:.2f}s")

    async def _generate_with_retry(self, prompt: str) -> str:
        max_retries = self.settings.ai_max_retries
        last_error: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                return await self._call(prompt)
            except AgentError:
                raise
            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    wait_time = min(
                        self.settings.ai_retry_base_delay * (2 ** attempt),
                        self.settings.ai_retry_max_delay,
                    )
                    logger.warning(
                        f"Grok attempt {attempt + 1}/{max_retries + 1} failed: {e}; retrying in {wait_time}s"
                    )
                    await asyncio.sleep(wait_time)

        logger.error(f"All {max_retries + 1} Grok attempts failed: {last_error}")
        raise AgentError(str(last_error)) from last_error

    async def _call(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.settings.ai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.settings.ai_temperature,
            max_tokens=self.settings.ai_max_tokens,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise ValueError("Grok returned empty response")
        return content
