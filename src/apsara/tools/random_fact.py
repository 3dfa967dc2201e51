"""Random fun fact built-in tool."""

from __future__ import annotations

import random

from apsara.tools.base import ApsaraTool, ToolResult

FACTS = [
    "Honey never spoils. Archaeologists have found 3,000-year-old honey in Egyptian tombs that was still edible.",
    "Octopuses have three hearts and blue blood.",
    "A day on Venus is longer than its year.",
    "Bananas are berries, but strawberries are not.",
    "The Eiffel Tower can grow up to 6 inches taller during the summer due to thermal expansion.",
    "There are more possible iterations of a game of chess than there are atoms in the observable universe.",
    'A group of flamingos is called a "flamboyance".',
    "The shortest war in history lasted 38 to 45 minutes (between Britain and Zanzibar in 1896).",
    "Wombat poop is cube-shaped.",
    "The inventor of the Pringles can is buried in one.",
]


class RandomFactTool(ApsaraTool):
    name = "get_random_fact"
    description = (
        "Returns a random fun fact. Use this when the user asks for a fun fact, "
        "trivia, or something interesting."
    )

    async def execute(self, **_) -> ToolResult:
        return ToolResult.success(fact=random.choice(FACTS))
