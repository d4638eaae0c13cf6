"""附件 MIME 类型识别。

先看文件头的魔数，识别不出来再按扩展名查表，最后默认 text/plain。
"""

from pathlib import PurePath
from typing import Mapping, Optional


DEFAULT_MIME = "text/plain"

_SOURCE_EXTENSIONS = (
    ".txt", ".c", ".h", ".cpp", ".hpp", ".py", ".js", ".ts", ".java", ".cs",
    ".go", ".rs", ".sh", ".rb", ".php", ".css", ".md",
)

EXTENSION_MIME: Mapping[str, str] = {
    **{ext: "text/plain" for ext in _SOURCE_EXTENSIONS},
    ".html": "text/html",
    ".json": "application/json",
    ".xml": "application/xml",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}

SNIFF_BYTES = 16


def sniff_mime(head: bytes) -> Optional[str]:
    """根据内容开头的魔数判断类型，识别不出返回 None。"""

    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if head.startswith(b"%PDF-"):
        return "application/pdf"
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return None


def mime_from_name(name: Optional[str]) -> str:
    if not name:
        return DEFAULT_MIME
    suffix = PurePath(name).suffix.lower()
    return EXTENSION_MIME.get(suffix, DEFAULT_MIME)


def classify_mime(head: bytes, name: Optional[str] = None) -> str:
    return sniff_mime(head) or mime_from_name(name)
