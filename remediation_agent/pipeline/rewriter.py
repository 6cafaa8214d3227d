"""Rewriter: asks a model for a corrected version of a whole file."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from claude_agent_sdk import (
    ClaudeSDKClient,
    ClaudeAgentOptions,
    AssistantMessage,
    TextBlock,
    ResultMessage,
)

from ..models import Issue, UsageCounters
from ..utils import get_logger


logger = get_logger("pipeline.rewriter")

UNUSABLE_MARKER = "UNABLE_TO_FIX"

_FENCED_BLOCK = re.compile(r"```[^\n`]*\n(.*?)```", re.DOTALL)

FIX_SYSTEM_PROMPT = """You are a senior developer fixing static-analysis issues.
You always answer with the COMPLETE corrected file in a single fenced code block.
Fix every listed issue with minimal changes; do not refactor unrelated code,
rename public APIs or drop existing behaviour. The file must still compile.
If you cannot produce a correct file, answer with exactly: UNABLE_TO_FIX"""

FIX_PROMPT = """
Fix the following issues in `{file_path}`.

## Issues to Fix
{issues}

## Current File
```
{source_code}
```
{feedback}
Reply with the complete corrected content of `{file_path}` in one fenced code block.
"""

DIAGNOSTIC_FEEDBACK = """
## Previous Attempt Failed to Compile
Your previous version of this file was rejected by the compiler:
```
{diagnostic}
```
Start again from the current file above and avoid this error.
"""

INVALID_OUTPUT_INSTRUCTION = (
    "Your previous answer did not contain a usable file. Reply with the full corrected "
    "file inside a single fenced code block and nothing else."
)


@dataclass(frozen=True)
class FixRequest:
    """Everything the rewriter needs to fix one file."""
    file_path: str
    source_code: str
    issues: Sequence[Issue]
    system_instructions: str = FIX_SYSTEM_PROMPT
    prior_diagnostic: Optional[str] = None
    corrective_instruction: Optional[str] = None

    def render_prompt(self) -> str:
        feedback = ""
        if self.prior_diagnostic:
            feedback += DIAGNOSTIC_FEEDBACK.format(diagnostic=self.prior_diagnostic)
        if self.corrective_instruction:
            feedback += f"\n## Note\n{self.corrective_instruction}\n"

        return FIX_PROMPT.format(
            file_path=self.file_path,
            issues=format_issue_list(self.issues),
            source_code=self.source_code,
            feedback=feedback,
        )


@dataclass
class RewriteResult:
    """Candidate file body, or None when the rewriter produced nothing usable."""
    content: Optional[str]
    usage: UsageCounters = field(default_factory=UsageCounters)
    raw_output: str = ""

    @property
    def usable(self) -> bool:
        return self.content is not None


def format_issue_list(issues: Sequence[Issue]) -> str:
    lines: List[str] = []
    for i, issue in enumerate(issues, 1):
        lines.append(
            f"{i}. [{issue.severity.value}] {issue.rule} at line "
            f"{issue.line_start}" + (f"-{issue.line_end}" if issue.line_end > issue.line_start else "")
            + f": {issue.message}"
        )
    return "\n".join(lines)


def extract_source(text: Optional[str]) -> Optional[str]:
    """
    Sanitize model output into candidate file content.

    Strips surrounding markdown fences; when prose surrounds several fenced
    blocks the largest one wins. Output without a fenced block is prose
    (a refusal or an explanation) and yields None, as does an empty block.
    """
    if text is None:
        return None
    stripped = text.strip()
    if not stripped or stripped.startswith(UNUSABLE_MARKER):
        return None

    blocks = _FENCED_BLOCK.findall(stripped)
    if blocks:
        body = max(blocks, key=len)
    elif stripped.startswith("```"):
        # Unterminated fence: drop the opening line
        body = stripped.split("\n", 1)[1] if "\n" in stripped else ""
    else:
        return None

    body = body.strip("\n")
    if not body.strip():
        return None
    return body + "\n"


class Rewriter(ABC):
    """Produces a complete replacement body for a file."""

    @abstractmethod
    async def rewrite(self, request: FixRequest) -> RewriteResult:
        """
        Ask for a corrected file.

        Returns:
            RewriteResult whose content is None when the output was unusable
        """


class ClaudeRewriter(Rewriter):
    """Rewriter backed by the Claude Agent SDK, without file-editing tools."""

    def __init__(self, model: Optional[str] = None, max_turns: int = 1):
        self.model = model
        self.max_turns = max_turns

    def build_options(self, request: FixRequest) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            system_prompt=request.system_instructions,
            tools=[],  # no built-in tools: drafting never touches the disk
            allowed_tools=[],
            max_turns=self.max_turns,
            model=self.model,
        )

    async def rewrite(self, request: FixRequest) -> RewriteResult:
        options = self.build_options(request)

        chunks: List[str] = []
        usage = UsageCounters()

        async with ClaudeSDKClient(options=options) as client:
            await client.query(request.render_prompt())

            async for message in client.receive_response():
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            chunks.append(block.text)

                elif isinstance(message, ResultMessage):
                    usage = _usage_from_result(message)
                    logger.debug(f"Rewrite of {request.file_path} took {message.duration_ms}ms")
                    if message.is_error:
                        logger.warning(f"Rewriter reported an error for {request.file_path}: {message.result}")

        raw = "".join(chunks)
        return RewriteResult(content=extract_source(raw), usage=usage, raw_output=raw)


def _usage_from_result(message: ResultMessage) -> UsageCounters:
    raw = message.usage or {}
    return UsageCounters(
        input_tokens=int(raw.get("input_tokens", 0) or 0),
        output_tokens=int(raw.get("output_tokens", 0) or 0),
        cost_usd=float(message.total_cost_usd or 0.0),
    )
