# src/demand_board/llm/offline.py

from __future__ import annotations

import json

from ..core.ports import ChatMessage


class OfflineLLMClient:
    """
    Offline deterministic LLM client used for demos when no external API is configured.

    Behavior:
    - Every non-empty line of the last user message becomes one task
      (priority MEDIA, category Dev).
    - Lines ending with "?" are reported as blockers instead.
    """

    def complete(self, messages: list[ChatMessage], system_prompt: str) -> str:
        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        tasks: list[dict[str, str]] = []
        blockers: list[str] = []
        for line in user_text.splitlines():
            line = line.strip().lstrip("-*•").strip()
            if not line:
                continue
            if line.endswith("?"):
                blockers.append(line)
                continue
            tasks.append(
                {
                    "id": str(len(tasks) + 1),
                    "task": line,
                    "category": "Dev",
                    "priority": "MEDIA",
                    "justification": "Modo offline: sem classificação automática.",
                }
            )

        return json.dumps({"tasks": tasks, "blockers": blockers}, ensure_ascii=False)
