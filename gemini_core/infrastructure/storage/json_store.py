import json
import os
from pathlib import Path
from uuid import uuid4

from gemini_core.domain.conversation import Conversation
from gemini_core.domain.exceptions import StoreError, ValidationError
from gemini_core.domain.models import GenerationParams
from gemini_core.providers.payload import build_request, load_conversation


class JsonHistoryStore:
    """以请求 JSON 格式保存/加载会话历史。

    文件内容与发送给 API 的请求体一致（systemInstruction / contents / ...），
    加载时只读取 contents 与 systemInstruction。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root).expanduser().resolve() if root else None

    def save(self, conversation: Conversation, params: GenerationParams, path: str | Path) -> Path:
        target = self._resolve(path)
        doc = build_request(conversation, params)
        tmp_path = target.parent / f".{target.name}.{uuid4().hex}.tmp"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, target)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        return target

    def load(self, path: str | Path) -> Conversation:
        target = self._resolve(path)
        try:
            data = json.loads(target.read_text(encoding="utf-8"))
        except OSError as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        except ValueError as e:
            raise StoreError(code="STORE_FORMAT_ERROR", message=f"Invalid history file: {e}")
        if not isinstance(data, dict):
            raise StoreError(code="STORE_FORMAT_ERROR", message="JSON file is not a valid history object.")
        return load_conversation(data)

    def _resolve(self, path: str | Path) -> Path:
        raw = Path(path).expanduser()
        if not str(path).strip() or ".." in raw.parts:
            raise ValidationError(code="UNSAFE_PATH", message=f"Unsafe file path specified: {path}")
        if self._root is None:
            return raw.resolve()
        candidate = raw.resolve() if raw.is_absolute() else (self._root / raw).resolve()
        try:
            candidate.relative_to(self._root)
        except ValueError:
            raise ValidationError(code="UNSAFE_PATH", message=f"Path outside history root: {path}")
        return candidate
