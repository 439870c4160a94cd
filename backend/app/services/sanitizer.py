"""
Sanitizer - 入力サニタイズ

検証の前に文字列フィールドを正規化する:
1. HTML の除去（許可リストにないタグ・script/style の中身・属性を落とす）
2. Unicode カテゴリ C の文字を除去（許可された制御文字を除く）
3. 全角スペースを半角スペースに置換
4. 連続する空白を 1 つの半角スペースにまとめる
5. 前後の空白を除去

エンティティ参照の復号で新しいタグが現れることがあるので、結果が変化しなくなるまで繰り返す。
"""
import re
import unicodedata
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any, FrozenSet

from pydantic import BaseModel

_WHITESPACE = re.compile(r"\s+")
_MAX_PASSES = 10


class _HTMLStripper(HTMLParser):
    """許可タグ以外を除去する HTML パーサ"""

    skip_tags = {"script", "style", "head", "meta", "link", "noscript", "iframe", "object", "embed"}

    def __init__(self, allowed_tags: FrozenSet[str]):
        super().__init__(convert_charrefs=True)
        self.allowed_tags = allowed_tags
        self.fed = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.skip_tags:
            self._skip_depth += 1
        elif not self._skip_depth and tag in self.allowed_tags:
            # 属性はすべて落とす（イベントハンドラ・javascript: URI を含む）
            self.fed.append(f"<{tag}>")

    def handle_startendtag(self, tag, attrs):
        if not self._skip_depth and tag in self.allowed_tags:
            self.fed.append(f"<{tag}/>")

    def handle_endtag(self, tag):
        if tag in self.skip_tags:
            self._skip_depth = max(self._skip_depth - 1, 0)
        elif not self._skip_depth and tag in self.allowed_tags:
            self.fed.append(f"</{tag}>")

    def handle_data(self, data):
        if not self._skip_depth:
            self.fed.append(data)

    def get_data(self) -> str:
        return "".join(self.fed)


@dataclass(frozen=True)
class SanitizerConfig:
    fields: FrozenSet[str] = frozenset({"name"})
    allowed_controls: FrozenSet[str] = frozenset()
    allowed_tags: FrozenSet[str] = frozenset()


class Sanitizer:
    def __init__(self, config: SanitizerConfig = None):
        self.config = config or SanitizerConfig()

    def strip_html(self, text: str) -> str:
        stripper = _HTMLStripper(self.config.allowed_tags)
        stripper.feed(text)
        stripper.close()
        return stripper.get_data()

    def remove_controls(self, text: str) -> str:
        allowed = self.config.allowed_controls
        return "".join(
            ch for ch in text
            if ch in allowed or not unicodedata.category(ch).startswith("C")
        )

    @staticmethod
    def normalize_whitespace(text: str) -> str:
        text = text.replace("　", " ")
        return _WHITESPACE.sub(" ", text).strip()

    def _pass(self, text: str) -> str:
        return self.normalize_whitespace(self.remove_controls(self.strip_html(text)))

    def sanitize(self, text: str) -> str:
        """文字列を正規化する。sanitize(sanitize(s)) == sanitize(s) が成り立つ"""
        if not text:
            return text
        current = text
        for _ in range(_MAX_PASSES):
            cleaned = self._pass(current)
            if cleaned == current:
                break
            current = cleaned
        return current

    def sanitize_data(self, data: Any) -> Any:
        """dict / list を再帰的にたどり、設定されたフィールド名の文字列を正規化する"""
        if isinstance(data, dict):
            result = {}
            for key, value in data.items():
                if key in self.config.fields and isinstance(value, str):
                    result[key] = self.sanitize(value)
                else:
                    result[key] = self.sanitize_data(value)
            return result
        if isinstance(data, list):
            return [self.sanitize_data(item) for item in data]
        return data

    def sanitize_model(self, model: BaseModel) -> BaseModel:
        """正規化済みの新しいモデルを返す（元のモデルは変更しない）"""
        return type(model).model_validate(self.sanitize_data(model.model_dump()))


sanitizer = Sanitizer()
