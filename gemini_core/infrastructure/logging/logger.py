"""结构化日志。

所有组件通过 log_event() 写日志，日志名为 "gemini_core"：

- 文件 handler 写入 ``{log_dir}/gemini.log``，每行一个 JSON 对象（ts/level/name/msg + 业务字段）。
- 业务字段以 ``extra={"extra": {...}}`` 传入，合并进 JSON 顶层；值为 None 的字段省略。
- log_redact_content 打开时只保留消息前 64 个字符。
- 密钥从不写入日志，调用方只传凭据下标。

logger 同时向上传播，测试里可以用 caplog 直接断言。
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from gemini_core.config.settings import settings


LOGGER_NAME = "gemini_core"
LOG_FILE = "gemini.log"
REDACT_LIMIT = 64


class JsonFormatter(logging.Formatter):
    def __init__(self, redact: bool = False):
        super().__init__()
        self.redact = redact

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage() or ""
        if self.redact:
            msg = msg[:REDACT_LIMIT]
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update({k: v for k, v in extra.items() if v is not None})
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(cfg=settings) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    # 重复导入或多次调用时不重复挂 handler
    if any(getattr(h, "_gemini_core", False) for h in logger.handlers):
        return logger
    log_dir = Path(cfg.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / LOG_FILE, encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh._gemini_core = True  # type: ignore[attr-defined]
    fh.setFormatter(JsonFormatter(redact=cfg.log_redact_content))
    logger.addHandler(fh)
    return logger


def log_event(level: int, message: str, **fields) -> None:
    """以结构化字段写日志，字段进入 JSON 行的顶层。"""

    logger.log(level, message, extra={"extra": fields})


logger = setup_logger()
