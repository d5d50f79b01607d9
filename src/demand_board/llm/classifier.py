# src/demand_board/llm/classifier.py

from __future__ import annotations

"""
Demand classifier: turns a free-text list of demands into prioritized tasks.

The model is asked for a JSON object:
    {"tasks": [{"id", "task", "category", "priority", "justification"}],
     "blockers": ["..."]}

Entries with an empty task are dropped; unknown category/priority values are
coerced to the defaults (Dev / MEDIA). Output that is not a JSON object at all
raises ClassificationError.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from ..core.models import Category, Priority, TaskDraft
from ..core.ports import LLMClient
from ..errors import ClassificationError
from .client import friendly_llm_error_message

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
Você é um Gerente de Projetos de IA Sênior atuando no Tribunal de Justiça do Paraná (TJPR).
Sua função é transformar listas desorganizadas de demandas em um plano de ação estruturado.

Siga rigorosamente esta MATRIZ DE PRIORIZAÇÃO:

PRIORIDADE ALTA (CRÍTICA):
- Bugs que impedem o funcionamento de sistemas ou bots em produção.
- Demandas com prazos legais/judiciais rígidos.
- Solicitações diretas da Presidência ou que afetam Magistrados/Servidores em massa.
- Segurança de dados ou vazamento de informações.

PRIORIDADE MÉDIA (IMPORTANTE):
- Desenvolvimento de novas features já planejadas.
- Melhoria na acurácia de modelos de IA existentes.
- Documentação técnica e relatórios gerenciais.
- Integrações de API que não bloqueiam o sistema principal.

PRIORIDADE BAIXA (DESEJÁVEL):
- Pesquisa e Estudo (POCs) de novas tecnologias sem aplicação imediata.
- Refatoração estética de código ou interfaces internas.
- Ideias "Nice to have" sem solicitante definido.

Retorne APENAS um objeto JSON com o formato:
{"tasks": [{"id": "1", "task": "...", "category": "Dev|Dados|Infra|Pesquisa",
"priority": "ALTA|MEDIA|BAIXA", "justification": "..."}],
"blockers": ["itens que precisam de mais informação"]}
""".strip()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class ClassifiedDemand:
    id: str
    task: str
    category: Category
    priority: Priority
    justification: str = ""


@dataclass(slots=True)
class ClassificationResult:
    tasks: list[ClassifiedDemand] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)

    def by_priority(self, priority: Priority) -> list[ClassifiedDemand]:
        return [t for t in self.tasks if t.priority is priority]


def _extract_json_object(raw: str) -> dict[str, Any]:
    text = _FENCE_RE.sub("", (raw or "").strip())
    try:
        data = json.loads(text)
    except ValueError:
        # Some models wrap the object in prose; take the outermost braces.
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ClassificationError("A resposta do classificador não é JSON.", preview=text[:120]) from None
        try:
            data = json.loads(text[start : end + 1])
        except ValueError as e:
            raise ClassificationError("A resposta do classificador não é JSON.", preview=text[:120]) from e

    if not isinstance(data, dict):
        raise ClassificationError("A resposta do classificador não é um objeto JSON.", kind=type(data).__name__)
    return data


def parse_classification(raw: str) -> ClassificationResult:
    data = _extract_json_object(raw)

    raw_tasks = data.get("tasks") or []
    if not isinstance(raw_tasks, list):
        raise ClassificationError(
            "Resposta do classificador inválida: 'tasks' deve ser uma lista.",
            kind=type(raw_tasks).__name__,
        )

    tasks: list[ClassifiedDemand] = []
    for i, item in enumerate(raw_tasks, start=1):
        if not isinstance(item, dict):
            logger.debug("Classifier entry #%d is not an object, dropped", i)
            continue
        title = str(item.get("task") or "").strip()
        if not title:
            logger.debug("Classifier entry #%d has no task text, dropped", i)
            continue
        tasks.append(
            ClassifiedDemand(
                id=str(item.get("id") or i),
                task=title,
                category=Category.from_db(item.get("category")),
                priority=Priority.from_db(item.get("priority")),
                justification=str(item.get("justification") or "").strip(),
            )
        )

    raw_blockers = data.get("blockers") or []
    if not isinstance(raw_blockers, list):
        raw_blockers = [raw_blockers]
    blockers = [str(b).strip() for b in raw_blockers if str(b).strip()]

    return ClassificationResult(tasks=tasks, blockers=blockers)


class DemandClassifier:
    def __init__(self, llm: LLMClient, *, system_prompt: str = SYSTEM_PROMPT) -> None:
        self._llm = llm
        self._system_prompt = system_prompt

    async def classify(self, text: str) -> ClassificationResult:
        text = (text or "").strip()
        if not text:
            return ClassificationResult()

        messages = [{"role": "user", "content": text}]
        try:
            raw = await asyncio.to_thread(self._llm.complete, messages, self._system_prompt)
        except ClassificationError:
            raise
        except Exception as e:
            logger.warning("Classifier call failed: %s", e)
            raise ClassificationError(friendly_llm_error_message(e), cause=e.__class__.__name__) from e

        result = parse_classification(raw)
        logger.info(
            "Classified %d task(s), %d blocker(s) from %d chars",
            len(result.tasks),
            len(result.blockers),
            len(text),
        )
        return result


def to_drafts(
    result: ClassificationResult,
    *,
    project: str,
    assignees: list[str],
) -> list[TaskDraft]:
    """Seed one draft per classified demand; the caller still picks who does what."""
    return [
        TaskDraft(
            title=d.task,
            assignees=list(assignees),
            category=d.category,
            priority=d.priority,
            project=project,
            justification=d.justification,
        )
        for d in result.tasks
    ]
