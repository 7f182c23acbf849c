"""Shared test helpers."""

from typing import Iterable, List

from presence_gateway.presence.liveness import LivenessOracle


class ScriptedOracle(LivenessOracle):
    """Answers liveness checks from a fixed script, then repeats the last answer."""

    def __init__(self, answers: Iterable[bool]):
        self.answers: List[bool] = list(answers)
        self.calls: List[str] = []

    async def is_alive(self, connection_id: str) -> bool:
        self.calls.append(connection_id)
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]
