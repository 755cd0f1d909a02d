"""Parse agent CLI output and extract structured data.

Agents answer in free text that usually wraps a JSON verdict in a markdown
code block, sometimes with explanations before or after it. This module finds
that JSON regardless of the surrounding text.
"""

import json
import re
from typing import Any, Dict

from .exceptions import AgentOutputParseError

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class OutputParser:
    """Parse agent output and extract structured content."""

    @staticmethod
    def extract_json(output: str, strict: bool = True) -> Dict[str, Any]:
        """Extract a JSON object from agent output.

        Args:
            output: Raw output from the agent CLI
            strict: If True, raise when no JSON object is found.
                    If False, return an empty dict instead.

        Returns:
            Parsed JSON object

        Raises:
            AgentOutputParseError: If no JSON object can be parsed (strict only)
        """
        if not output or not output.strip():
            if strict:
                raise AgentOutputParseError("Output is empty")
            return {}

        json_content = None

        # 1. Code blocks: ```json\n{...}\n``` or ```\n{...}\n```. Last one wins,
        # agents tend to put the final verdict at the end.
        code_block_pattern = r"```(?:json)?\s*\n([\s\S]*?)\n```"
        for match in reversed(re.findall(code_block_pattern, output, re.MULTILINE)):
            try:
                candidate = json.loads(match.strip())
            except json.JSONDecodeError:
                continue
            if isinstance(candidate, dict):
                json_content = candidate
                break

        # 2. Raw object between the first { and the last }
        if json_content is None:
            obj_start = output.find("{")
            obj_end = output.rfind("}")
            if obj_start != -1 and obj_end > obj_start:
                try:
                    candidate = json.loads(output[obj_start : obj_end + 1])
                    if isinstance(candidate, dict):
                        json_content = candidate
                except json.JSONDecodeError:
                    pass

        # 3. Line-by-line search for a standalone object
        if json_content is None:
            json_lines = []
            in_json = False
            for line in output.split("\n"):
                stripped = line.strip()
                if stripped.startswith("{"):
                    in_json = True
                    json_lines = [line]
                elif in_json:
                    json_lines.append(line)
                if in_json and stripped.endswith("}"):
                    try:
                        candidate = json.loads("\n".join(json_lines))
                    except json.JSONDecodeError:
                        continue
                    if isinstance(candidate, dict):
                        json_content = candidate
                        break

        if json_content is None:
            if strict:
                raise AgentOutputParseError(
                    f"No valid JSON found in output. Output preview: {output[:200]}..."
                )
            return {}

        return json_content

    @staticmethod
    def sanitize_output(output: str, max_length: int = 10000) -> str:
        """Sanitize output for logging/display.

        Args:
            output: Raw output
            max_length: Maximum length to return

        Returns:
            Output with ANSI codes removed, truncated to max_length
        """
        if not output:
            return ""

        cleaned = ANSI_ESCAPE.sub("", output)

        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length] + f"\n... (truncated {len(cleaned) - max_length} characters)"

        return cleaned.strip()
