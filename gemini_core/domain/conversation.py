"""会话存储模型。

- Conversation: 有序 Turn 列表 + 可选的系统提示词，所有修改均在原地完成。
- PendingAttachments: 尚未提交的附件，容量有限，提交 prompt 时整体转入新的 Turn。

存储总是保存传入 Turn 的独立副本，调用方持有的对象后续修改不会影响会话。
"""

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from .exceptions import AttachmentLimitError, InvalidIndexError
from .models import Part, Role, Turn


ATTACHMENT_LIMIT = 1024


@dataclass
class Conversation:
    turns: List[Turn] = field(default_factory=list)
    system_instruction: Optional[str] = None

    def __len__(self) -> int:
        return len(self.turns)

    @property
    def last_turn(self) -> Optional[Turn]:
        return self.turns[-1] if self.turns else None

    def append(self, turn: Turn) -> Turn:
        owned = turn.copy()
        self.turns.append(owned)
        return owned

    def add(self, role: Role, parts: List[Part]) -> Turn:
        return self.append(Turn(role=role, parts=parts))

    def remove_last(self) -> Optional[Turn]:
        """回滚最近一条消息；会话为空时返回 None。"""

        if not self.turns:
            return None
        return self.turns.pop()

    def remove_part(self, turn_idx: int, part_idx: int) -> Part:
        """删除指定消息中的某个 Part。

        下标越界时抛出 InvalidIndexError，会话保持不变。
        """

        if turn_idx < 0 or turn_idx >= len(self.turns):
            raise InvalidIndexError(code="INVALID_TURN_INDEX", message=f"Invalid message index {turn_idx}.")
        turn = self.turns[turn_idx]
        if part_idx < 0 or part_idx >= len(turn.parts):
            raise InvalidIndexError(
                code="INVALID_PART_INDEX",
                message=f"Invalid part index {part_idx} for message {turn_idx}.",
            )
        return turn.parts.pop(part_idx)

    def clear(self) -> None:
        self.turns.clear()

    def reset(self) -> None:
        """开始新会话：清空消息并移除系统提示词。"""

        self.turns.clear()
        self.system_instruction = None

    def attachments(self) -> Iterator[Tuple[int, int, Part]]:
        """遍历历史中的所有附件，产出 (turn_idx, part_idx, part)。"""

        for i, turn in enumerate(self.turns):
            for j, part in enumerate(turn.parts):
                if part.is_attachment:
                    yield i, j, part

    def copy(self) -> "Conversation":
        return Conversation(
            turns=[t.copy() for t in self.turns],
            system_instruction=self.system_instruction,
        )


class PendingAttachments:
    """待发送附件登记表。"""

    def __init__(self, capacity: int = ATTACHMENT_LIMIT):
        self.capacity = capacity
        self._parts: List[Part] = []

    def __len__(self) -> int:
        return len(self._parts)

    def __iter__(self) -> Iterator[Part]:
        return iter(list(self._parts))

    @property
    def is_full(self) -> bool:
        return len(self._parts) >= self.capacity

    def ensure_capacity(self) -> None:
        if self.is_full:
            raise AttachmentLimitError(
                code="ATTACHMENT_LIMIT",
                message=f"Attachment limit of {self.capacity} reached.",
            )

    def add(self, part: Part) -> None:
        if not part.is_attachment:
            raise ValueError("only attachment parts can be registered")
        self.ensure_capacity()
        self._parts.append(part)

    def remove(self, index: int) -> Part:
        if index < 0 or index >= len(self._parts):
            raise InvalidIndexError(code="INVALID_ATTACHMENT_INDEX", message="Invalid attachment index.")
        return self._parts.pop(index)

    def clear(self) -> None:
        self._parts.clear()

    def drain(self) -> List[Part]:
        """取出全部附件并清空登记表。"""

        parts, self._parts = self._parts, []
        return parts
