"""
Garage Schedules — turn LLM-extracted contract line items into Garage revenue schedules.

Architecture: Parse → Normalize (enums, policy, price) → Agreement scoring → Garage mapping
Philosophy:  Trust the model to read. Trust only code to decide.
"""

__version__ = "1.0.0"
