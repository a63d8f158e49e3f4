"""Narrative turn pipeline.

Executes one player action:
  1. Build the narrator request (system prompt + bounded history + action).
  2. Completion gateway → raw text.
  3. parse_narrator_output → prose, 1-4 choices, settlement effects.
  4. Calendar advance for TIME+ directives.
  5. apply_settlement on copies of character + progress, then one write.

Settlement block format (parsed by settlement.parse_settlement):
  【结算开始】
  ITEM+:培元丹×2
  GOLD+:10
  【结算结束】

The orchestrator lives in .orchestrator and is imported from there.
"""

from .effects import apply_settlement  # noqa: F401
from .segments import (  # noqa: F401
    DEFAULT_CHOICES,
    parse_narrator_output,
    find_choices,
    turn_to_text,
)
from .settlement import (  # noqa: F401
    CLOSE_MARKER,
    OPEN_MARKER,
    extract_settlement,
    parse_directive,
    parse_settlement,
)
