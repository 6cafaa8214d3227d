"""Collects structured payloads that an agent reports through a tool call."""

from typing import Any, Dict, Iterable, List, Tuple


class StorageTool:
    """
    Receives tool-call payloads from an agent run and keeps the valid ones.

    Payloads missing a required field are rejected with an MCP error response
    so the agent can correct itself in the same session.
    """

    def __init__(self, required: Iterable[str] = ()):
        self.required: Tuple[str, ...] = tuple(required)
        self._values: List[Dict[str, Any]] = []
        self.rejected = 0

    def store(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Tool handler body; returns an MCP-compatible response."""
        missing = [name for name in self.required if payload.get(name) in (None, "")]
        if missing:
            self.rejected += 1
            return {
                "content": [{
                    "type": "text",
                    "text": f"Rejected: missing {', '.join(missing)}",
                }],
                "is_error": True,
            }

        self._values.append(dict(payload))
        return {
            "content": [{
                "type": "text",
                "text": f"Stored. Total: {len(self._values)}",
            }]
        }

    @property
    def values(self) -> List[Dict[str, Any]]:
        """Copy of the accepted payloads, in arrival order."""
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)
