"""
agri-buddy: a voice-first farm diary for loquat greenhouses.

Listens to the grower's end-of-day narration, asks only about what is
missing, and stores a structured work record.
"""

__version__ = "0.1.0"
