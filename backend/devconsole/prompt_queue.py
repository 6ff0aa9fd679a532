"""FIFO buffer for prompts submitted while a session is busy"""
from collections import deque
from typing import Deque, List, Optional

from devconsole.models import QueuedPrompt


class PromptQueue:
    """
    Prompts leave in arrival order. Only the tail may be edited or removed,
    so revising the latest prompt never reorders the ones before it.
    """

    def __init__(self):
        self._items: Deque[QueuedPrompt] = deque()
        self._seq = 0

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def enqueue(self, text: str) -> QueuedPrompt:
        self._seq += 1
        prompt = QueuedPrompt(text=text, seq=self._seq)
        self._items.append(prompt)
        return prompt

    def pop_head(self) -> Optional[QueuedPrompt]:
        return self._items.popleft() if self._items else None

    def peek_tail(self) -> Optional[QueuedPrompt]:
        return self._items[-1] if self._items else None

    def pop_tail(self) -> Optional[QueuedPrompt]:
        """Remove the latest prompt so the user can revise it"""
        return self._items.pop() if self._items else None

    def replace_tail(self, text: str) -> Optional[QueuedPrompt]:
        """Rewrite the latest prompt in place, keeping its position"""
        if not self._items:
            return None
        tail = self._items[-1]
        self._items[-1] = QueuedPrompt(text=text, seq=tail.seq)
        return self._items[-1]

    def snapshot(self) -> List[QueuedPrompt]:
        return list(self._items)

    def clear(self):
        self._items.clear()
