"""
模型选择 (ModelSelector)

根据文件类型、性能档位和上游分词接口测得的 token 数，选出上游模型名。
本地没有分词器，每一次判断都是一次真实的 /token/count 网络调用，
因此同样的输入在上游分词行为变化时可能得到不同结果。

选择规则（StepFun）：
- image / img: 先按小上下文图像模型计数，不超上限即选它；否则按大上下文图像模型重新计数，
  仍超限则报错。图像不区分性能档位。
- video: 固定返回轻量视频模型，不计数。
- 文本: 先用最快模型计数
    fast      → 不超过快速模型上限即选快速模型
    advanced  → 快速模型计数不超过中档上限时，用中档模型重新计数确认
    balanced  → 按上下文从小到大依次尝试，当前计数不超过某一档上限时用该档模型重新计数确认，
                重新计数的结果作为后续判断的当前计数
  都不满足时抛 TokenBudgetExceededError（携带实测 token 数与该档位的上限）。

模型名与上限是配置（ModelCatalog），而不是写死在判断逻辑里。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.exceptions import TokenBudgetExceededError

logger = logging.getLogger(__name__)

PERFORMANCE_FAST = "fast"
PERFORMANCE_BALANCED = "balanced"
PERFORMANCE_ADVANCED = "advanced"


class TokenCounter(Protocol):
    async def count_tokens(self, model: str, messages: list[dict[str, Any]]) -> int: ...


@dataclass(frozen=True)
class ModelLimit:
    name: str
    limit: int


@dataclass(frozen=True)
class ModelCatalog:
    """可配置的模型目录"""
    image_small: ModelLimit = ModelLimit("step-1v-8k", 4000)
    image_large: ModelLimit = ModelLimit("step-1v-32k", 25000)
    video: str = "step-1.5v-mini"
    fast: ModelLimit = ModelLimit("step-1-flash", 10000)
    advanced: ModelLimit = ModelLimit("step-2-16k", 12000)
    balanced: tuple[ModelLimit, ...] = field(default_factory=lambda: (
        ModelLimit("step-1-8k", 6000),
        ModelLimit("step-1-32k", 25000),
        ModelLimit("step-1-128k", 80000),
        ModelLimit("step-1-256k", 180000),
    ))

    @property
    def balanced_ceiling(self) -> int:
        return max(m.limit for m in self.balanced)


DEFAULT_CATALOG = ModelCatalog()


def normalize_file_type(file_type: str | None) -> str:
    """前端历史上同时使用 img 与 image"""
    value = (file_type or "").strip().lower()
    return "image" if value == "img" else value


class ModelSelector:
    def __init__(self, counter: TokenCounter, catalog: ModelCatalog = DEFAULT_CATALOG):
        self.counter = counter
        self.catalog = catalog

    async def _count(self, model: str, messages: list[dict[str, Any]]) -> int:
        count = await self.counter.count_tokens(model, messages)
        logger.info(f"模型: {model}; Token 数量: {count}")
        return count

    async def select_model(
        self,
        file_type: str | None,
        performance_level: str | None,
        messages: list[dict[str, Any]],
    ) -> str:
        """
        选出不超上限的模型名

        Raises:
            TokenBudgetExceededError: 所有候选模型都放不下当前消息
            ProviderError: 分词接口调用失败
        """
        kind = normalize_file_type(file_type)
        if kind == "image":
            return await self._select_image_model(messages)
        if kind == "video":
            return self.catalog.video
        return await self._select_text_model(performance_level, messages)

    async def _select_image_model(self, messages: list[dict[str, Any]]) -> str:
        small, large = self.catalog.image_small, self.catalog.image_large

        count = await self._count(small.name, messages)
        if count <= small.limit:
            return small.name

        count = await self._count(large.name, messages)
        if count <= large.limit:
            return large.name
        raise TokenBudgetExceededError(count, large.limit)

    async def _select_text_model(self, performance_level: str | None, messages: list[dict[str, Any]]) -> str:
        catalog = self.catalog
        tier = (performance_level or PERFORMANCE_BALANCED).strip().lower()

        count = await self._count(catalog.fast.name, messages)

        if tier == PERFORMANCE_FAST:
            if count <= catalog.fast.limit:
                return catalog.fast.name
            raise TokenBudgetExceededError(count, catalog.fast.limit)

        if tier == PERFORMANCE_ADVANCED:
            if count <= catalog.advanced.limit:
                count = await self._count(catalog.advanced.name, messages)
                if count <= catalog.advanced.limit:
                    return catalog.advanced.name
            raise TokenBudgetExceededError(count, catalog.advanced.limit)

        # balanced 以及未知档位
        for rung in catalog.balanced:
            if count > rung.limit:
                continue
            count = await self._count(rung.name, messages)
            if count <= rung.limit:
                return rung.name
        raise TokenBudgetExceededError(count, catalog.balanced_ceiling)


# OpenAI 兼容接口：档位 → (模型, 是否流式)，不做 token 计数
OPENAI_TIER_MODELS: dict[str, tuple[str, bool]] = {
    PERFORMANCE_FAST: ("gpt-4o-mini", True),
    PERFORMANCE_BALANCED: ("o1-preview", False),
}
OPENAI_DEFAULT_MODEL: tuple[str, bool] = ("o1-pro", True)


def select_openai_model(performance_level: str | None) -> tuple[str, bool]:
    tier = (performance_level or "").strip().lower()
    return OPENAI_TIER_MODELS.get(tier, OPENAI_DEFAULT_MODEL)
