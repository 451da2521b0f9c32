"""
Avatar Voice Agent - Avatar Interface
=====================================

The renderer that draws the character is an external collaborator.
The agent only pushes three signals at it:

- expression name (e.g. "F05")
- motion index within the idle motion group
- mouth-open value in [0, 1] for lip sync
"""

import logging

logger = logging.getLogger(__name__)


class AvatarController:
    """
    Base avatar sink. Renderers subclass this and override all three methods.

    The base implementation only logs, which is what the command-line
    agent uses when no renderer is attached.
    """

    def set_expression(self, name: str) -> None:
        logger.debug("avatar_expression %s", name)

    def start_motion(self, index: int) -> None:
        logger.debug("avatar_motion %d", index)

    def set_mouth_open(self, value: float) -> None:
        pass
