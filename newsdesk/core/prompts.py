"""Prompt templates for title and body rewriting.

Every provider renders the same two templates; providers without a separate
system role concatenate system and user text (see `PromptTemplate.as_single_prompt`).
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptTemplate:
    """A prompt template with its sampling settings."""

    key: str
    system_template: str
    user_template: str
    temperature: float
    max_tokens: int

    def render(self, text: str, keywords: str) -> list[dict[str, str]]:
        """Render chat messages for the given input text and SEO keywords."""
        return [
            {"role": "system", "content": self.system_template.format(keywords=keywords)},
            {"role": "user", "content": self.user_template.format(text=text)},
        ]

    def as_single_prompt(self, text: str, keywords: str) -> str:
        messages = self.render(text, keywords)
        return "\n\n".join(m["content"] for m in messages)


_RULES_COMMON = """必須遵守：
1. 全文使用繁體中文，不可出現簡體字
2. 自然融入 SEO 關鍵字，不要堆砌
3. 保持專業、正確，保留原文核心意思"""

DEFAULT_PROMPTS: dict[str, PromptTemplate] = {
    "title": PromptTemplate(
        key="title",
        system_template=(
            "你是汽車冷氣與冷媒領域的資深編輯。請改寫使用者提供的新聞標題，"
            "讓它更利於搜尋引擎並包含以下關鍵字：{keywords}。\n\n"
            + _RULES_COMMON
            + "\n4. 標題簡潔有力，不超過 50 字\n5. 只回覆改寫後的標題"
        ),
        user_template="請改寫這個標題：{text}",
        temperature=0.7,
        max_tokens=100,
    ),
    "body": PromptTemplate(
        key="body",
        system_template=(
            "你是汽車冷氣與冷媒領域的資深編輯。請改寫使用者提供的新聞內容，"
            "並融入以下 SEO 關鍵字：{keywords}。\n\n"
            + _RULES_COMMON
            + "\n4. 段落通順易讀\n5. 只回覆改寫後的內文"
        ),
        user_template="請改寫以下內容：\n\n{text}",
        temperature=0.7,
        max_tokens=2000,
    ),
}


def get_prompt(key: str) -> PromptTemplate:
    """Get a prompt template by key ('title' or 'body').

    Raises:
        KeyError: If no template exists for the key.
    """
    return DEFAULT_PROMPTS[key]
