"""
Text-based diary interface.

Provides a command-line interface for recording the farm diary via typed
narration when voice is unavailable.
"""

import asyncio
from abc import ABC, abstractmethod

from agri_buddy.io.commands import HELP_TEXT, handle_line, render_context
from agri_buddy.orchestrator.interview_orchestrator import InterviewOrchestrator
from agri_buddy.orchestrator.schemas import Phase


class InterviewInterface(ABC):
    """Abstract base class for diary interfaces."""

    @abstractmethod
    async def run(self) -> None:
        """Run the interface."""
        ...

    @abstractmethod
    async def send_message(self, message: str) -> None:
        """
        Send a message to the user.

        Args:
            message: Message to display.
        """
        ...

    @abstractmethod
    async def receive_input(self) -> str:
        """
        Receive input from the user.

        Returns:
            User's input string.
        """
        ...


class TextInterface(InterviewInterface):
    """
    Command-line text interface.

    The orchestrator should be built with a `ConsoleSynthesizer` playback so
    that spoken lines appear in the terminal.
    """

    def __init__(self, orchestrator: InterviewOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._last_rendered = ""

    async def run(self) -> None:
        """Run the interactive diary session."""
        print("\n" + "=" * 60)
        print("あぐりバディ 作業日誌")
        print("=" * 60 + "\n")
        print(HELP_TEXT + "\n")

        await self._orchestrator.begin()
        await self._orchestrator.wait_idle()

        while True:
            line = await self.receive_input()
            if not await handle_line(self._orchestrator, line, print):
                break
            await self._orchestrator.wait_idle()
            await self._show_state()

        await self._orchestrator.aclose()
        print("\nおつかれさまでした。")

    async def send_message(self, message: str) -> None:
        """
        Display a message to the terminal.

        Args:
            message: Message to display.
        """
        print(f"\n{message}\n")

    async def receive_input(self) -> str:
        """
        Get input from the terminal.

        Returns:
            User's input string.
        """
        return await self._get_input("あなた: ")

    async def _get_input(self, prompt: str) -> str:
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return "/quit"

    async def _show_state(self) -> None:
        ctx = self._orchestrator.context
        rendered = render_context(ctx)
        if rendered and rendered != self._last_rendered:
            await self.send_message(rendered)
        self._last_rendered = rendered
        if ctx.phase == Phase.IDLE and not ctx.notice:
            print("（/new で次の記録をはじめます）")
