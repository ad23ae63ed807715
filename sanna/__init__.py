"""
Sanna - Voice and text assistant agent core

This is the root package for Sanna, containing shared utilities and the agent
orchestration modules that sit between a conversational front end, an LLM
provider, and the tools the model may call.

Core modules:
- utils: Environment parsing and small shared helpers
- datetime_utils: Clock, epoch-millisecond and time-of-day helpers
- assistant: Agent loop, providers, tools, conversation pipeline and background runners
"""

__version__ = "0.4.2"
