"""
System Prompt Builder — renders `{{placeholder}}` sections into the system prompt.

Placeholders:
  {{outputSchema}}    structured reply contract for the configured format
  {{functionPrompt}}  textual function list (adapters without native tool calling)
  {{memory}}          retrieved memories
"""

from __future__ import annotations
from typing import Optional

from .structured_format import ReplyFormat

_OUTPUT_SCHEMA = """You should generate output in {fmt} observing the schema provided. Strictly follow these {fmt} requirements:

- All elements MUST be properly nested and closed
- Do not include any subelements in reply and finalReply
- The text in reply and finalReply must be unescaped and must not contain HTML tags
- Enum values must be exact matches to schema values

Schema:
status
  type: enum
  values: [success, skip, interaction]
  description: success to send a message, skip to stay silent, interaction to wait for the return value of the functions you call. Functions may also run with success or skip when their return value is not needed.
replyTo
  type: string
  description: Channel or user id to reply to. Prefix with 'private:' to send a private message to a user.
nextReplyIn
  type: integer
  description: Messages before the next reply.
logic
  type: string
  description: Reasoning behind the response.
reply
  type: string
  description: Initial response draft.
check
  type: string
  description: Checks performed to make sure the draft follows the rules.
finalReply
  type: string
  description: Final response after checks, sent to the target given by replyTo.
functions
  type: array
  description: Functions to execute. With status interaction only fill in status, logic and functions.
"""

_JSON_FUNCTION_EXAMPLE = (
    '[{"name": "FUNCTION_NAME", "params": {"PARAM_NAME": "value1"}}, '
    '{"name": "function2", "params": {"param1": "value1"}}]'
)

_XML_FUNCTION_EXAMPLE = """<functions>
  <function>
    <name>FUNCTION_NAME</name>
    <params>
      <PARAM_NAME>value1</PARAM_NAME>
    </params>
  </function>
</functions>"""

NO_FUNCTIONS = "No functions available."
MEMORY_HEADER = "Relevant memories:"


def output_schema(fmt: ReplyFormat) -> str:
    return _OUTPUT_SCHEMA.format(fmt=ReplyFormat.parse(fmt).label)


def function_schema(fmt: ReplyFormat) -> str:
    """Instructions for textual function calls in the given format."""
    fmt = ReplyFormat.parse(fmt)
    example = _JSON_FUNCTION_EXAMPLE if fmt is ReplyFormat.JSON else _XML_FUNCTION_EXAMPLE
    return (
        "Select the most suitable functions and parameters from the list below, "
        "based on the ongoing conversation. You can run multiple functions in a single response.\n"
        f"Add them to the functions field of your {fmt.label} output: {example}\n"
        "Replace FUNCTION_NAME with the function name and PARAM_NAME with the parameter name.\n"
        "Available functions:\n"
    )


def format_memories(memories: list[str]) -> str:
    if not memories:
        return ""
    return MEMORY_HEADER + "\n" + "\n".join(f"- {m}" for m in memories)


def merge_memories(system_prompt: str, memories: list[str]) -> str:
    """Fill `{{memory}}`, or append a memory section when the placeholder is absent."""
    section = format_memories(memories)
    if "{{memory}}" in system_prompt:
        return system_prompt.replace("{{memory}}", section)
    if not section:
        return system_prompt
    return f"{system_prompt.rstrip()}\n\n{section}"


class PromptBuilder:
    """Render the configured system prompt template for one adapter."""

    def __init__(self, template: str, response_format: ReplyFormat = ReplyFormat.JSON):
        self.template = template
        self.response_format = ReplyFormat.parse(response_format)

    def build(self, function_prompt: Optional[str] = None) -> str:
        """
        Args:
            function_prompt: Textual function descriptions, or None when the
                adapter calls tools natively (the placeholder is then removed).

        The `{{memory}}` placeholder is left in place for `merge_memories`.
        """
        prompt = self.template.replace("{{outputSchema}}", output_schema(self.response_format))
        if function_prompt is None:
            functions = ""
        else:
            functions = function_schema(self.response_format) + (function_prompt or NO_FUNCTIONS)
        return prompt.replace("{{functionPrompt}}", functions)
