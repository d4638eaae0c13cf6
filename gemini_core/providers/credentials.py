"""API 密钥轮换。

CredentialSet 维护有序的 (key, origin) 列表与轮换游标：
游标总是指向有效条目；列表为空时调用方改走免密钥端点。
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union, Dict


DEFAULT_ORIGIN = "default"


@dataclass(frozen=True)
class Credential:
    key: str
    origin: str = DEFAULT_ORIGIN

    def __repr__(self) -> str:
        # 避免密钥出现在日志或异常信息中；短密钥完全隐藏
        masked = "***" if len(self.key) <= 8 else f"***{self.key[-4:]}"
        return f"Credential(key='{masked}', origin={self.origin!r})"


class CredentialSet:
    def __init__(self, credentials: Optional[Iterable[Credential]] = None):
        self._items: List[Credential] = list(credentials or [])
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> Credential:
        return self._items[index]

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def cursor(self) -> int:
        return self._cursor

    def add(self, key: str, origin: str = DEFAULT_ORIGIN) -> None:
        key = (key or "").strip()
        if not key:
            return
        cred = Credential(key=key, origin=origin or DEFAULT_ORIGIN)
        if cred not in self._items:
            self._items.append(cred)

    def next(self) -> Optional[Tuple[int, Credential]]:
        """返回游标处的 (index, credential) 并前移游标；集合为空时返回 None。"""

        if not self._items:
            return None
        index = self._cursor
        self._cursor = (self._cursor + 1) % len(self._items)
        return index, self._items[index]

    def discard(self, index: int) -> Optional[Credential]:
        """移除被服务端拒绝的凭据，并保持游标有效。"""

        if index < 0 or index >= len(self._items):
            return None
        removed = self._items.pop(index)
        if index < self._cursor:
            self._cursor -= 1
        if not self._items or self._cursor >= len(self._items):
            self._cursor = 0
        return removed

    @classmethod
    def from_settings(cls, cfg) -> "CredentialSet":
        """按配置构造：先加入 gemini_api_keys，再加入单个 gemini_api_key。"""

        creds = cls()
        default_origin = getattr(cfg, "gemini_api_key_origin", None) or DEFAULT_ORIGIN
        entries: List[Union[str, Dict[str, str]]] = list(getattr(cfg, "gemini_api_keys", None) or [])
        for entry in entries:
            if isinstance(entry, str):
                creds.add(entry, default_origin)
            elif isinstance(entry, dict):
                creds.add(entry.get("key") or "", entry.get("origin") or default_origin)
        single = getattr(cfg, "gemini_api_key", None)
        if single:
            creds.add(single, default_origin)
        return creds
