"""
IO module for diary interfaces.

Provides text and voice front ends for the interview.
"""

from agri_buddy.io.text_interface import TextInterface
from agri_buddy.io.voice_interface import VoiceInterface

__all__ = ["TextInterface", "VoiceInterface"]
