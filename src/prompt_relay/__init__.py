# prompt_relay: streams chat completions from an upstream provider with an in-band
# usage record, and expands prompt references in system messages.

__version__ = "0.3.0"
