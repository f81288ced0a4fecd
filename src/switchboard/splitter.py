import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_CHARS = 4000

SplitFn = Callable[[str], Awaitable[list[dict]]]


def normalize_description(description: str) -> str:
    cleaned = re.sub(r"[^a-z0-9\s]", " ", description.lower())
    return " ".join(cleaned.split())


def content_id(description: str) -> str:
    """Stable identity for a task, derived from its normalized wording."""
    return hashlib.sha1(normalize_description(description).encode("utf-8")).hexdigest()[:12]


@dataclass(frozen=True)
class TaskItem:
    description: str
    quantity: int = 1
    original_index: int = 0
    id: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": self.quantity,
            "original_index": self.original_index,
        }


def build_tasks(entries: list[tuple[str, int]]) -> list[TaskItem]:
    """Create TaskItems with content-derived ids.

    Identical descriptions in one split get an occurrence suffix so every task
    in a pass has a distinct id that still survives re-ordering across passes.
    """
    seen: dict[str, int] = {}
    tasks = []
    for index, (description, quantity) in enumerate(entries):
        base = content_id(description)
        occurrence = seen.get(base, 0)
        seen[base] = occurrence + 1
        task_id = base if occurrence == 0 else f"{base}-{occurrence}"
        tasks.append(TaskItem(
            description=description,
            quantity=quantity,
            original_index=index,
            id=task_id,
        ))
    return tasks


def _coerce_quantity(value) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return quantity if quantity >= 1 else 1


class TaskSplitter:
    """Breaks accumulated call text into the discrete jobs the caller asked for.

    Only a bounded trailing window of the transcript is sent to the split
    provider. Any failure, or an empty answer, falls back to a single task
    holding the whole (windowed) text: a vague request must never be turned
    into invented specific jobs.
    """

    def __init__(self, split_fn: Optional[SplitFn] = None, window_chars: int = DEFAULT_WINDOW_CHARS):
        self.split_fn = split_fn
        self.window_chars = window_chars

    def _window(self, text: str) -> str:
        if len(text) <= self.window_chars:
            return text
        windowed = text[-self.window_chars:]
        # Don't start mid-word
        space = windowed.find(" ")
        return windowed[space + 1:] if 0 <= space < 40 else windowed

    async def split(self, text: str) -> list[TaskItem]:
        text = self._window(text.strip())
        if not text:
            return []
        if self.split_fn is None:
            return build_tasks([(text, 1)])

        try:
            raw_tasks = await self.split_fn(text)
        except Exception as e:
            logger.warning(f"Task split failed, using whole text as one task: {e}")
            return build_tasks([(text, 1)])

        entries = []
        for raw in raw_tasks or []:
            if not isinstance(raw, dict):
                continue
            description = str(raw.get("description") or "").strip()
            if not description:
                continue
            entries.append((description, _coerce_quantity(raw.get("quantity", 1))))

        if not entries:
            logger.info("Task split returned no tasks, using whole text as one task")
            return build_tasks([(text, 1)])
        logger.debug("Split into %d task(s): %s", len(entries), [d for d, _ in entries])
        return build_tasks(entries)
