"""
Nexus — Agent Swarm Orchestrator

This package turns a single natural-language goal into a small swarm of
model-backed agents, runs them in dependency order, and distills their output
into one mission report that can be questioned afterwards.

Architecture layers (bottom to top):
    1. Provider client (Anthropic Messages API, retries, timeouts)
    2. Swarm backend (decompose / execute / synthesize / follow-up prompts)
    3. Swarm scheduler (agent state machine, dependency release, synthesis trigger)
    4. Mission control (archive-aware planning, follow-up chat)
    5. CLI (rich progress rendering)
"""

__version__ = "0.1.0"
