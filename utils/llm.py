"""Claude API client: streams a generation as typed events."""

import logging
import os
import time

import anthropic

from config.defaults import DEFAULTS

logger = logging.getLogger("sitesmith.llm")

MODEL = DEFAULTS["model"]
MAX_TOKENS = DEFAULTS["max_tokens"]

# Side channel for dependencies the model wants installed.
INSTALL_PACKAGES_TOOL = {
    "name": "install_packages",
    "description": "Install npm packages the generated code imports.",
    "input_schema": {
        "type": "object",
        "properties": {
            "packages": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Package names, e.g. [\"react-router-dom\", \"axios\"]",
            },
            "reason": {"type": "string"},
        },
        "required": ["packages"],
    },
}


def get_client():
    """Return an Anthropic client. Raises if no API key is set."""
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError(
            "ANTHROPIC_API_KEY environment variable is not set. "
            "Get a key at https://console.anthropic.com/ and run:\n"
            "  export ANTHROPIC_API_KEY='your-key-here'"
        )
    return anthropic.Anthropic(api_key=api_key)


def _request_kwargs(system_prompt, messages):
    kwargs = {
        "model": MODEL,
        "max_tokens": MAX_TOKENS,
        "system": system_prompt,
        "messages": messages,
        "tools": [INSTALL_PACKAGES_TOOL],
    }
    budget = DEFAULTS["thinking_budget"]
    if budget:
        # Extended thinking only runs at temperature 1.
        kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
    else:
        kwargs["temperature"] = DEFAULTS["temperature"]
    return kwargs


def tool_packages(message):
    """Packages requested through install_packages tool calls on a final message."""
    packages = []
    for block in message.content:
        if getattr(block, "type", None) != "tool_use" or block.name != INSTALL_PACKAGES_TOOL["name"]:
            continue
        for name in (block.input or {}).get("packages", []):
            if isinstance(name, str) and name.strip() and name.strip() not in packages:
                packages.append(name.strip())
    return packages


def stream_events(system_prompt, user_message, history=None, client=None):
    """Stream one generation, yielding event dicts.

    Yields ``status``, ``thinking``, ``thinking_complete`` and ``stream``
    (``raw: True`` text deltas), then exactly one terminal ``complete`` or
    ``error``. The request is retried once when it fails before any event
    was yielded for it.
    """
    client = client or get_client()
    messages = list(history or []) + [{"role": "user", "content": user_message}]

    yield {"type": "status", "message": "Generating code..."}

    for attempt in range(2):
        text = ""
        emitted = False
        try:
            with client.messages.stream(**_request_kwargs(system_prompt, messages)) as stream:
                for event in stream:
                    if event.type == "text":
                        text += event.text
                        emitted = True
                        yield {"type": "stream", "text": event.text, "raw": True}
                    elif event.type == "thinking":
                        emitted = True
                        yield {"type": "thinking", "text": event.thinking}
                    elif event.type == "content_block_stop" and \
                            getattr(event.content_block, "type", None) == "thinking":
                        emitted = True
                        yield {"type": "thinking_complete"}
                final = stream.get_final_message()
        except anthropic.APIError as e:
            if attempt == 0 and not emitted:
                logger.warning("Generation request failed, retrying: %s", e)
                time.sleep(2)
                continue
            logger.error("Generation failed: %s", e)
            yield {"type": "error", "error": str(e)}
            return

        truncated = final.stop_reason == "max_tokens"
        if truncated:
            logger.warning("Response hit the token limit; files may be incomplete")
        yield {
            "type": "complete",
            "generatedCode": text,
            "packagesToInstall": tool_packages(final),
            "stopReason": final.stop_reason,
            "truncated": truncated,
        }
        return
