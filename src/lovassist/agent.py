"""Language-model interface for the tool-calling legal agent.

The agent receives the question, the evidence gathered so far and the results
of earlier tool calls, and either requests more tool calls or returns a JSON
answer with citations. Tool-call arguments are validated against a tagged
union before anything is dispatched.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Annotated, Any, Literal, Optional, Sequence, Union

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .config import Settings
from .errors import AgentError, ToolArgumentsError
from .types import AgentFunctionResult, AgentOutput, Citation, Evidence, LAW_TYPES, ToolCall

logger = logging.getLogger(__name__)

LEGAL_DOCUMENTS_TOOL = "search_lovdata_legal_documents"
LEGAL_PRACTICE_TOOL = "search_lovdata_legal_practice"

PROMPT_OVERHEAD_CHARS = 200
MIN_EVIDENCE_SPACE = 10000

SYSTEM_PROMPT = """Du er en juridisk assistent som bruker dokumenter fra Lovdatas offentlige data.
Svar alltid på norsk med et presist, nøkternt språk.

Du har tilgang til to søkefunksjoner:
1. search_lovdata_legal_documents: finner lover, forskrifter, vedtak og andre juridiske dokumenter.
   La lawType være tom hvis brukeren ikke ber om en bestemt dokumenttype; da søkes det i prioritert rekkefølge
   (Lov, Forskrift, Vedtak, Instruks, Reglement, Vedlegg).
2. search_lovdata_legal_practice: søker på lovdata.no etter rettsavgjørelser, Lovtidend og praksis.

Retningslinjer:
- Søk alltid før du svarer. Ikke svar kun på egen kunnskap.
- Evaluer søkeresultatene. Er de irrelevante, søk på nytt med bedre søkeord, annen dokumenttype eller annet år.
- Søker du på nytt med search_lovdata_legal_documents, erstattes tidligere dokumentresultater.
- Bruk evidenceId for å referere til kildene. Nummerering settes automatisk.
- Mangler du grunnlag, si det høflig og foreslå videre søk.
- Når du har nok informasjon, returner JSON på formatet
  {"answer": "...", "citations": [{"evidenceId": "lovdata-1", "quote": "..."}]}."""

TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": LEGAL_DOCUMENTS_TOOL,
            "description": (
                "Søk i Lovdatas offentlige data etter lover, forskrifter, vedtak og andre juridiske dokumenter. "
                "Støtter filtrering på dokumenttype, år og departement."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Søkeord hentet fra brukerens spørsmål"},
                    "lawType": {
                        "type": "string",
                        "enum": list(LAW_TYPES),
                        "description": "Dokumenttype. Utelat for prioritert søk over alle typer.",
                    },
                    "year": {"type": "integer", "description": "Årstall dokumentet er fra"},
                    "ministry": {"type": "string", "description": "Ansvarlig departement"},
                    "page": {"type": "integer", "minimum": 1, "description": "Sidenummer (starter på 1)"},
                    "pageSize": {"type": "integer", "minimum": 1, "maximum": 20, "description": "Treff per side"},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": LEGAL_PRACTICE_TOOL,
            "description": (
                "Søk på lovdata.no etter rettsavgjørelser, kunngjøringer i Lovtidend og praktisk anvendelse av regler."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Søkeord, gjerne lovnavn kombinert med juridiske termer"},
                    "num": {"type": "integer", "minimum": 1, "maximum": 20, "description": "Antall resultater"},
                },
                "required": ["query"],
            },
        },
    },
]


class LegalDocumentsArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    query: str = Field(min_length=1)
    law_type: Optional[Literal["Lov", "Forskrift", "Vedtak", "Instruks", "Reglement", "Vedlegg"]] = Field(
        default=None, alias="lawType"
    )
    year: Optional[int] = Field(default=None, ge=1000, le=9999)
    ministry: Optional[str] = None
    page: int = Field(default=1, ge=1)
    page_size: Optional[int] = Field(default=None, ge=1, le=20, alias="pageSize")


class LegalPracticeArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str = Field(min_length=1)
    num: int = Field(default=10, ge=1, le=20)


class LegalDocumentsCall(BaseModel):
    tool: Literal["search_lovdata_legal_documents"]
    args: LegalDocumentsArgs
    call_id: Optional[str] = None


class LegalPracticeCall(BaseModel):
    tool: Literal["search_lovdata_legal_practice"]
    args: LegalPracticeArgs
    call_id: Optional[str] = None


ValidatedToolCall = Annotated[Union[LegalDocumentsCall, LegalPracticeCall], Field(discriminator="tool")]
_tool_call_adapter: TypeAdapter[Any] = TypeAdapter(ValidatedToolCall)


def validate_tool_call(call: ToolCall) -> Union[LegalDocumentsCall, LegalPracticeCall]:
    """
    Validate a raw tool call from the model.

    Raises:
        ToolArgumentsError: Unknown tool name or invalid arguments.
    """
    arguments: Any = call.arguments
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as exc:
            raise ToolArgumentsError(call.name, f"arguments are not valid JSON: {exc}") from exc
    if not isinstance(arguments, dict):
        raise ToolArgumentsError(call.name, "arguments must be an object")
    try:
        return _tool_call_adapter.validate_python({"tool": call.name, "args": arguments, "call_id": call.id})
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ToolArgumentsError(call.name, details) from exc


def truncate_text(text: Optional[str], max_chars: int) -> Optional[str]:
    if not text or len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 3)].rstrip() + "..."


def format_evidence(item: Evidence, max_content: int, *, compact: bool = False) -> str:
    lines = [f"ID: {item.id}", f"Kilde: {item.source}"]
    if item.title:
        lines.append(f"Tittel: {item.title}")
    if item.date and not compact:
        lines.append(f"Dato: {item.date}")
    if item.link and not compact:
        lines.append(f"Lenke: {item.link}")
    if item.snippet:
        lines.append(f"Utdrag: {item.snippet}")
    content = truncate_text(item.content, max_content)
    if content:
        lines.append(f"Innhold:\n{content}")
    return "\n".join(lines)


def format_function_results(results: Sequence[AgentFunctionResult]) -> str:
    blocks = []
    for number, result in enumerate(results, start=1):
        body = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
        blocks.append(f"Resultat fra {result.name} (kall {number}):\n{body}")
    return "\n\n".join(blocks)


def build_user_prompt(
    question: str,
    evidence: Sequence[Evidence],
    function_results: Sequence[AgentFunctionResult] = (),
    *,
    max_evidence: int = 6,
    max_content_per_item: int = 3000,
    max_prompt_chars: int = 50000,
) -> str:
    """
    Render the user message for one agent call.

    Only the first ``max_evidence`` items are rendered. Content is shortened to
    fit ``max_prompt_chars``; when that is not enough, items are rendered
    compactly with a tighter content budget.
    """
    shown = list(evidence[:max_evidence])
    header = f"Brukerspørsmål: {question}\n\nTilgjengelige kilder:\n"
    footer = "\n\nInstruksjoner: Besvar spørsmålet ved å bruke kildene. Husk å returnere JSON-formatet som spesifisert."
    history = ""
    if function_results:
        history = "\n\nTidligere søkeresultater:\n" + format_function_results(function_results)

    if not shown:
        evidence_text = "(ingen kilder ennå)"
    else:
        available = max(max_prompt_chars - len(question) - PROMPT_OVERHEAD_CHARS, MIN_EVIDENCE_SPACE)
        per_item = min(max_content_per_item, available // len(shown))
        evidence_text = "\n\n".join(format_evidence(item, per_item) for item in shown)

    prompt = header + evidence_text + footer + history
    if len(prompt) <= max_prompt_chars or not shown:
        return prompt[:max_prompt_chars]

    logger.warning(
        "Prompt length %d exceeds %d, truncating evidence content",
        len(prompt),
        max_prompt_chars,
    )
    remaining = max_prompt_chars - len(header) - len(footer) - len(history)
    per_item = max(0, remaining // len(shown) // 2)
    evidence_text = "\n\n".join(format_evidence(item, per_item, compact=True) for item in shown)
    return (header + evidence_text + footer + history)[:max_prompt_chars]


def parse_agent_json(raw: str) -> tuple[str, list[Citation]]:
    """
    Extract answer and citations from model output.

    The JSON object is taken from the first ``{`` to the last ``}``. Output
    without a parsable object is used verbatim as the answer. Citation entries
    without a string ``evidenceId`` are dropped.
    """
    text = (raw or "").strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text, []
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse agent JSON response: %s", exc)
        return text, []
    if not isinstance(parsed, dict):
        return text, []

    answer = parsed.get("answer") if isinstance(parsed.get("answer"), str) else text
    citations: list[Citation] = []
    raw_citations = parsed.get("citations")
    if isinstance(raw_citations, list):
        for entry in raw_citations:
            if not isinstance(entry, dict) or not isinstance(entry.get("evidenceId"), str):
                continue
            quote = entry.get("quote")
            citations.append(
                Citation(
                    evidence_id=entry["evidenceId"],
                    label=str(entry.get("label") or ""),
                    quote=quote if isinstance(quote, str) else None,
                )
            )
    return answer, citations


def compute_llm_timeout(prompt_chars: int, base: float, maximum: float) -> float:
    """Base timeout plus 0.2s per KB of prompt, capped at ``maximum``."""
    extra = (prompt_chars / 1024) * 0.2
    return min(base + extra, maximum)


class LovdataAgent:
    """Tool-calling agent over an OpenAI-compatible chat model."""

    def __init__(self, llm: Any, settings: Settings, *, model_name: Optional[str] = None):
        self.llm = llm
        self.settings = settings
        self.model_name = model_name or settings.llm_model

    @classmethod
    def from_settings(cls, settings: Settings) -> "LovdataAgent":
        llm = ChatOpenAI(
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            default_headers={
                "HTTP-Referer": "https://github.com/lovassist",
                "X-Title": "Lovassist Legal Assistant",
            },
        )
        return cls(llm, settings)

    async def generate(
        self,
        question: str,
        evidence: Sequence[Evidence],
        function_results: Sequence[AgentFunctionResult] = (),
    ) -> AgentOutput:
        """
        Ask the model for tool calls or a final answer.

        Raises:
            AgentError: When the call fails, times out or returns nothing usable.
        """
        prompt = build_user_prompt(
            question,
            evidence,
            function_results,
            max_evidence=self.settings.agent_max_evidence,
            max_content_per_item=self.settings.agent_max_content_chars,
            max_prompt_chars=self.settings.agent_max_prompt_chars,
        )
        messages = [SystemMessage(content=SYSTEM_PROMPT), HumanMessage(content=prompt)]
        runnable = self.llm.bind_tools(TOOLS)
        timeout = compute_llm_timeout(len(prompt), self.settings.llm_timeout_base, self.settings.llm_timeout_max)

        logger.debug(
            "Agent call: %d evidence, %d function results, prompt %d chars, timeout %.1fs",
            len(evidence),
            len(function_results),
            len(prompt),
            timeout,
        )
        try:
            response = await asyncio.wait_for(runnable.ainvoke(messages), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise AgentError(f"LLM call timed out after {timeout:.1f}s") from exc
        except Exception as exc:
            raise AgentError(f"LLM call failed: {exc}") from exc

        tool_calls = [
            ToolCall(name=call.get("name", ""), arguments=call.get("args") or {}, id=call.get("id"))
            for call in getattr(response, "tool_calls", None) or []
        ]
        # Malformed calls are passed on with their raw arguments so validation can report them.
        for invalid in getattr(response, "invalid_tool_calls", None) or []:
            logger.warning("Model produced an unparsable tool call: %s", invalid.get("name"))
            tool_calls.append(
                ToolCall(
                    name=invalid.get("name") or "",
                    arguments=invalid.get("args") or "",
                    id=invalid.get("id"),
                )
            )
        if tool_calls:
            return AgentOutput(tool_calls=tool_calls, model=self.model_name)

        content = response.content if hasattr(response, "content") else str(response)
        if isinstance(content, list):
            content = "".join(part.get("text", "") if isinstance(part, dict) else str(part) for part in content)
        if not content or not content.strip():
            raise AgentError("LLM returned an empty response")
        answer, citations = parse_agent_json(content)
        return AgentOutput(answer=answer, citations=citations, model=self.model_name)
