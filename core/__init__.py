"""
Core module for the Perception Node pipeline architecture.

Contains the event bus, typed values/events, the inference stages and
compute engines, the declarative pipeline spec, the pipeline graph and
its runner, and protocol definitions (interfaces) for all components.
"""
