"""agentloop - execution core for tool-using LLM agents.

agentloop drives a ReAct loop (reason, act, observe) against any mix of
LLM vendors, with task routing, retry, fallback and cooperative
cancellation handled in one place.

Key modules:

- :mod:`agentloop.agent` - Loop controller, tool dispatcher and event stream
- :mod:`agentloop.llm` - Model adapters (OpenAI, Claude, Qwen, SiliconFlow, custom) and the model manager
- :mod:`agentloop.tools` - Tool schemas, results and registry
- :mod:`agentloop.config` - Pydantic configuration and YAML loading
"""

__version__ = "0.1.0"
