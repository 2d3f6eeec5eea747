from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from leasebill.constants import TZ


def _system_clock() -> datetime:
    return datetime.now(TZ)


class OperationContext(BaseModel):
    """Who is writing, from where, and what time it is for them.

    Passed explicitly into every write so no repository or service reads
    the actor or the clock from global state.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    actor_id: int | None = None
    actor_username: str = ""
    source: str = "system"  # 'cli', 'job' or 'system'
    clock: Callable[[], datetime] = _system_clock

    def now(self) -> datetime:
        return self.clock()

    @property
    def actor_label(self) -> str:
        return self.actor_username or (str(self.actor_id) if self.actor_id is not None else self.source)

    @classmethod
    def system(cls, source: str = "job", clock: Callable[[], datetime] | None = None) -> OperationContext:
        return cls(actor_username="system", source=source, clock=clock or _system_clock)
