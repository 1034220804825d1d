"""Assistant pipeline: agent loop, citation normalisation and fallback answers."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

from .agent import (
    LEGAL_DOCUMENTS_TOOL,
    LEGAL_PRACTICE_TOOL,
    LegalDocumentsCall,
    LegalPracticeCall,
    LovdataAgent,
    validate_tool_call,
)
from .config import Settings
from .enhancement import attempt
from .errors import AgentError, LovassistError, ToolArgumentsError
from .evidence import LOVDATA_SOURCE, EvidenceBuilder, build_evidence
from .reranking import RerankService
from .retrieval_shared import compute_total_pages, normalize_page, normalize_page_size
from .search import LovdataSearchService
from .store import LovdataStore
from .types import (
    AgentFunctionResult,
    AgentOutput,
    AssistantResponse,
    Citation,
    Evidence,
    Pagination,
    SearchFilters,
)
from .web_search import SerperClient

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 5
MAX_API_PAGE_SIZE = 20
FALLBACK_SUMMARY_ITEMS = 5
MAX_HYDRATED_CHARS = 20000
HYDRATED_TAIL_CHARS = 1000
PRACTICE_MIN_RESULTS = 20
GUIDANCE_SNIPPET_CHARS = 500

NO_ANSWER_TEXT = "Jeg klarte ikke å generere et svar."
TIMEOUT_ANSWER = "Beklager, forespørselen tok for lang tid. Vennligst prøv igjen."


def normalise_citations(
    citations: Sequence[Citation],
    evidence: Sequence[Evidence],
    page: int,
    page_size: int,
) -> list[Citation]:
    """
    Map model citations onto the final evidence list.

    Labels are always recomputed as ``[N]``, N being the 1-based position in
    ``evidence`` offset by ``(page - 1) * page_size``. Without model citations,
    every evidence item is cited in list order. Citations of unknown ids are
    dropped.
    """
    offset = (max(1, page) - 1) * max(1, page_size)
    positions = {item.id: offset + index + 1 for index, item in enumerate(evidence)}
    if not citations:
        return [Citation(evidence_id=item.id, label=f"[{positions[item.id]}]") for item in evidence]
    return [
        Citation(evidence_id=citation.evidence_id, label=f"[{positions[citation.evidence_id]}]", quote=citation.quote)
        for citation in citations
        if citation.evidence_id in positions
    ]


def build_fallback_answer(question: str, evidence: Sequence[Evidence], provider: Optional[str] = None) -> str:
    """Deterministic summary used when no agent answer is available."""
    if not evidence:
        if provider:
            return (
                "Jeg fant ingen direkte treff i Lovdatas offentlige data, men fikk resultater via "
                f"{provider}. Se kildeoversikten under."
            )
        return "Jeg fant ingen relevante dokumenter. Vurder å formulere spørsmålet på en annen måte eller begrense søket."

    intro = "Her er en oppsummering basert på tilgjengelige dokumenter:"
    bullets = [
        f"- {item.title or 'Uten tittel'}{' (Lovdata)' if item.source == LOVDATA_SOURCE else ''}"
        for item in evidence[:FALLBACK_SUMMARY_ITEMS]
    ]
    return "\n".join([intro, *bullets])


def documents_guidance(hits: int, total: int, query: str, question: str) -> str:
    if hits > 0:
        return (
            f"VIKTIG EVALUERING: Du har fått {hits} søkeresultater ({total} totalt) for søket \"{query}\". "
            f"FØR DU GÅR VIDERE, må du evaluere om disse resultatene faktisk svarer på brukerens spørsmål "
            f"\"{question}\". Hvis resultatene er irrelevante eller ikke gir nok informasjon, må du forbedre "
            "søkeordene og søke på nytt. Du kan: 1) Bruke mer spesifikke søkeord, 2) Prøve annen dokumenttype "
            "(lawType), 3) Justere år-filteret, 4) Prøve bredere eller smalere søkeord. "
            "Kun relevante resultater skal brukes i svaret."
        )
    return "Ingen resultater funnet for dette søket. Vurder å prøve annen dokumenttype (lawType), år, eller bredere søkeord."


def practice_guidance(results: int) -> str:
    if results > 0:
        return (
            f"Found {results} legal practice result(s). "
            "These provide practical examples and case law interpretations."
        )
    return (
        "No legal practice results found. The search focused on rettsavgjørelser, Lovtidend, "
        "Trygderetten, and related sources."
    )


def truncate_content(text: str, limit: int = MAX_HYDRATED_CHARS, tail: int = HYDRATED_TAIL_CHARS) -> str:
    """Keep the head and the last ``tail`` characters of long documents."""
    if len(text) <= limit:
        return text
    head_limit = max(limit - tail, 0)
    head = text[:head_limit].rstrip() if head_limit else ""
    end = text[-tail:].lstrip()
    if not head:
        return end
    return f"{head}\n...\n{end}"


async def hydrate_evidence(
    evidence: Sequence[Evidence],
    store: Any,
    timeout: float,
) -> list[Evidence]:
    """
    Fill in ``content`` for store evidence that lacks it.

    Documents are fetched concurrently. Items that fail to load, and every item
    when the overall timeout is hit, are returned unchanged.
    """
    targets = [
        index
        for index, item in enumerate(evidence)
        if item.source == LOVDATA_SOURCE
        and not item.content
        and item.metadata.get("filename")
        and item.metadata.get("member")
    ]
    if not targets or store is None:
        return list(evidence)

    async def fetch_all() -> list[Any]:
        return await asyncio.gather(
            *(
                store.fetch_document(evidence[index].metadata["filename"], evidence[index].metadata["member"])
                for index in targets
            ),
            return_exceptions=True,
        )

    outcome = await attempt(fetch_all, timeout=timeout, label="Evidence hydration")
    fetched = outcome.or_else([])
    hydrated = list(evidence)
    for index, result in zip(targets, fetched):
        if isinstance(result, BaseException):
            logger.warning("Hydration failed for %s: %s", evidence[index].id, result)
            continue
        text, _member = result
        if text:
            hydrated[index] = replace(evidence[index], content=truncate_content(text))
    return hydrated


@dataclass
class AgentLoopResult:
    output: Optional[AgentOutput]
    """Final answer, or None when the loop ended without one."""

    evidence: list[Evidence]
    function_results: list[AgentFunctionResult] = field(default_factory=list)
    iterations: int = 0


class AgentLoop:
    """
    Drives the tool-calling agent for one request.

    Each iteration asks the agent for tool calls or a final answer. Tool calls
    run sequentially; their results become evidence (deduplicated) and a
    function result for the next iteration. A new legal-documents search
    replaces earlier store evidence; practice search evidence is kept.
    """

    def __init__(
        self,
        agent: LovdataAgent,
        search: LovdataSearchService,
        settings: Settings,
        *,
        web_search: SerperClient | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.agent = agent
        self.search = search
        self.web_search = web_search
        self.settings = settings
        self.page_size = page_size

    async def run(self, question: str) -> AgentLoopResult:
        builder = EvidenceBuilder(public_base_url=self.settings.public_base_url, site=self.settings.serper_site)
        function_results: list[AgentFunctionResult] = []
        output: Optional[AgentOutput] = None
        iterations = 0

        for iteration in range(self.settings.agent_max_iterations):
            iterations = iteration + 1
            await self._hydrate_prompt_evidence(builder)
            try:
                result = await self.agent.generate(question, builder.items, function_results)
            except AgentError as exc:
                logger.error("Agent iteration %d failed: %s", iterations, exc)
                break

            if result.is_final:
                output = result
                logger.info("Agent answered after %d iteration(s) with %d evidence", iterations, len(builder))
                break

            logger.info(
                "Agent iteration %d requested: %s",
                iterations,
                ", ".join(call.name for call in result.tool_calls),
            )
            validated: list[Union[LegalDocumentsCall, LegalPracticeCall]] = []
            for call in result.tool_calls:
                try:
                    validated.append(validate_tool_call(call))
                except ToolArgumentsError as exc:
                    logger.warning("Rejected tool call: %s", exc)
                    function_results.append(
                        AgentFunctionResult(
                            name=call.name,
                            arguments=call.arguments if isinstance(call.arguments, dict) else {"raw": call.arguments},
                            result={},
                            guidance="Ugyldige argumenter. Rett argumentene og prøv igjen.",
                            error=str(exc),
                        )
                    )

            if any(isinstance(call, LegalDocumentsCall) for call in validated):
                builder.discard_source(LOVDATA_SOURCE)

            for call in validated:
                function_results.append(await self.dispatch(call, builder, question))
        else:
            logger.warning("Agent did not answer within %d iterations", self.settings.agent_max_iterations)

        return AgentLoopResult(
            output=output,
            evidence=builder.items,
            function_results=function_results,
            iterations=iterations,
        )

    async def _hydrate_prompt_evidence(self, builder: EvidenceBuilder) -> None:
        items = builder.items
        shown = self.settings.agent_max_evidence
        if not any(item.source == LOVDATA_SOURCE and not item.content for item in items[:shown]):
            return
        hydrated = await hydrate_evidence(items[:shown], self.search.store, self.settings.hydration_timeout)
        builder.replace_items(hydrated + items[shown:])

    async def dispatch(
        self,
        call: Union[LegalDocumentsCall, LegalPracticeCall],
        builder: EvidenceBuilder,
        question: str,
    ) -> AgentFunctionResult:
        """Execute one validated tool call; failures become an error function result."""
        arguments = call.args.model_dump(by_alias=True, exclude_none=True)
        try:
            if isinstance(call, LegalDocumentsCall):
                return await self._search_documents(call, arguments, builder, question)
            return await self._search_practice(call, arguments, builder)
        except LovassistError as exc:
            logger.error("Tool %s failed: %s", call.tool, exc)
            return AgentFunctionResult(
                name=call.tool,
                arguments=arguments,
                result={},
                guidance="Søket feilet. Prøv igjen med andre søkeord eller en annen funksjon.",
                error=str(exc),
            )

    async def _search_documents(
        self,
        call: LegalDocumentsCall,
        arguments: dict[str, Any],
        builder: EvidenceBuilder,
        question: str,
    ) -> AgentFunctionResult:
        args = call.args
        filters = SearchFilters(year=args.year, law_type=args.law_type, ministry=args.ministry)
        result = await self.search.search(
            args.query,
            page=args.page,
            page_size=args.page_size or self.page_size,
            filters=filters,
        )
        added = builder.add_search_hits(result.hits)
        ids_by_key = {(item.metadata.get("filename"), item.metadata.get("member")): item.id for item in builder.items}
        hits = [
            {
                "index": position,
                "evidenceId": ids_by_key.get(hit.key),
                "title": hit.title,
                "snippet": (hit.snippet or "")[:GUIDANCE_SNIPPET_CHARS],
                "filename": hit.filename,
                "member": hit.member,
            }
            for position, hit in enumerate(result.hits, start=1)
        ]
        logger.info(
            "Document search %r: %d hits (%d total), %d new evidence",
            args.query,
            len(result.hits),
            result.pagination.total_hits,
            len(added),
        )
        return AgentFunctionResult(
            name=LEGAL_DOCUMENTS_TOOL,
            arguments=arguments,
            result={
                "query": args.query,
                "hits": hits,
                "searchedFiles": result.searched_files,
                "filters": result.filters.to_dict(),
                **result.pagination.to_dict(),
            },
            guidance=documents_guidance(len(result.hits), result.pagination.total_hits, args.query, question),
        )

    async def _search_practice(
        self,
        call: LegalPracticeCall,
        arguments: dict[str, Any],
        builder: EvidenceBuilder,
    ) -> AgentFunctionResult:
        if self.web_search is None:
            return AgentFunctionResult(
                name=LEGAL_PRACTICE_TOOL,
                arguments=arguments,
                result={},
                guidance="Nettsøk er ikke konfigurert. Bruk search_lovdata_legal_documents.",
                error="web search not configured",
            )
        # Ask for more than requested; non-document links are filtered out.
        num = max(call.args.num, PRACTICE_MIN_RESULTS)
        response = await self.web_search.search(call.args.query, num=num, restrict_to_practice=True)
        added = builder.add_web_results(response.organic)
        logger.info("Practice search %r: %d results, %d new evidence", call.args.query, len(response.organic), len(added))
        return AgentFunctionResult(
            name=LEGAL_PRACTICE_TOOL,
            arguments=arguments,
            result={
                "query": call.args.query,
                "site": response.site,
                "organic": [
                    {**item.to_dict(), "isDocument": item.is_document} for item in response.organic
                ],
                "evidenceIds": [item.id for item in added],
            },
            guidance=practice_guidance(len(response.organic)),
        )


@dataclass
class AssistantServices:
    """Process-wide clients, built once and shared by all requests."""

    search: LovdataSearchService
    agent: Optional[LovdataAgent] = None
    web_search: Optional[SerperClient] = None

    @property
    def store(self) -> Any:
        return self.search.store

    @classmethod
    def from_settings(cls, settings: Settings) -> "AssistantServices":
        store = LovdataStore.from_settings(settings)

        embeddings = None
        if settings.embeddings_enabled:
            try:
                from langchain_community.embeddings import HuggingFaceEmbeddings

                embeddings = HuggingFaceEmbeddings(model_name=settings.embedding_model_name)
            except Exception as e:
                logger.warning(f"Failed to load embeddings, continuing with full-text search only: {e}")

        reranker = None
        if settings.reranker_enabled:
            try:
                logger.info(f"Loading reranker backend: {settings.reranker_backend}")
                reranker = RerankService.from_settings(settings)
            except Exception as e:
                logger.warning(f"Failed to load reranker, continuing without reranking: {e}")

        web_search = SerperClient.from_settings(settings) if settings.serper_api_key else None
        agent = LovdataAgent.from_settings(settings) if settings.agent_enabled else None
        search = LovdataSearchService(
            store,
            settings,
            embeddings=embeddings,
            reranker=reranker,
            web_search=web_search,
        )
        return cls(search=search, agent=agent, web_search=web_search)

    async def aclose(self) -> None:
        closers = [getattr(self.store, "close", None)]
        if self.web_search is not None:
            closers.append(self.web_search.aclose)
        backend = getattr(self.search.reranker, "backend", None)
        closers.append(getattr(backend, "aclose", None))
        for close in closers:
            if close is None:
                continue
            try:
                await close()
            except Exception as exc:
                logger.warning("Error while closing client: %s", exc)


def _metadata(
    *,
    fallback_provider: Optional[str],
    agent_model: Optional[str],
    used_agent: bool,
    started: float,
    iterations: int = 0,
) -> dict[str, Any]:
    return {
        "fallbackProvider": fallback_provider,
        "agentModel": agent_model,
        "usedAgent": used_agent,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "processingTimeMs": round((time.perf_counter() - started) * 1000),
        "iterations": iterations,
    }


async def run_assistant(
    question: str,
    services: AssistantServices,
    settings: Settings,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    locale: Optional[str] = None,
) -> AssistantResponse:
    """
    Answer a legal question with cited evidence.

    With an agent configured the tool-calling loop gathers evidence; otherwise
    one orchestrated search (with web fallback) is run. The accumulated
    evidence is paginated, hydrated and cited.

    Raises:
        ValueError: When the question is empty or too long.
    """
    started = time.perf_counter()
    question = (question or "").strip()
    if not question:
        raise ValueError("Question cannot be empty")
    if len(question) > settings.max_question_length:
        raise ValueError(f"Question too long (max {settings.max_question_length} characters)")

    page = normalize_page(page)
    page_size = normalize_page_size(page_size, default=DEFAULT_PAGE_SIZE)
    offset = (page - 1) * page_size

    output: Optional[AgentOutput] = None
    fallback_provider: Optional[str] = None
    iterations = 0

    if services.agent is not None:
        loop = AgentLoop(
            services.agent,
            services.search,
            settings,
            web_search=services.web_search,
            page_size=page_size,
        )
        loop_result = await loop.run(question)
        output = loop_result.output
        all_evidence = loop_result.evidence
        iterations = loop_result.iterations
    else:
        logger.info("No agent configured, running direct search")
        all_evidence, fallback_provider = await _direct_search(question, services, settings, offset + page_size)

    total = len(all_evidence)
    pagination = Pagination(
        page=page,
        page_size=page_size,
        total_hits=total,
        total_pages=compute_total_pages(total, page_size),
    )
    page_evidence = all_evidence[offset:offset + page_size]
    page_evidence = await hydrate_evidence(page_evidence, services.store, settings.hydration_timeout)

    if output is not None:
        answer = output.answer or NO_ANSWER_TEXT
        citations = normalise_citations(output.citations, page_evidence, page, page_size)
        agent_model = output.model
    else:
        answer = build_fallback_answer(question, page_evidence, fallback_provider)
        citations = normalise_citations([], page_evidence, page, page_size)
        agent_model = None

    metadata = _metadata(
        fallback_provider=fallback_provider,
        agent_model=agent_model,
        used_agent=output is not None,
        started=started,
        iterations=iterations,
    )
    if locale:
        metadata["locale"] = locale
    logger.info(
        "Assistant run finished in %sms: %d evidence (%d on page), %d citations, agent=%s",
        metadata["processingTimeMs"],
        total,
        len(page_evidence),
        len(citations),
        output is not None,
    )
    return AssistantResponse(
        answer=answer,
        evidence=page_evidence,
        citations=citations,
        pagination=pagination,
        metadata=metadata,
    )


async def _direct_search(
    question: str,
    services: AssistantServices,
    settings: Settings,
    wanted: int,
) -> tuple[list[Evidence], Optional[str]]:
    try:
        result, fallback = await services.search.search_with_fallback(
            question,
            page=1,
            page_size=min(wanted, 50),
            infer=True,
        )
    except LovassistError as exc:
        logger.error("Direct search failed: %s", exc)
        return [], None

    organic = fallback.response.organic if fallback else None
    evidence = build_evidence(
        result.hits,
        organic,
        public_base_url=settings.public_base_url,
        site=settings.serper_site,
    )
    provider = fallback.provider if fallback and organic else None
    return evidence, provider


def build_timeout_response(page: int, page_size: int, elapsed_ms: int) -> AssistantResponse:
    """Well-formed degraded response for requests that ran out of time."""
    return AssistantResponse(
        answer=TIMEOUT_ANSWER,
        evidence=[],
        citations=[],
        pagination=Pagination(page=page, page_size=page_size, total_hits=0, total_pages=1),
        metadata={
            "fallbackProvider": None,
            "agentModel": None,
            "usedAgent": False,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "processingTimeMs": elapsed_ms,
            "error": "execution_timeout",
        },
    )


async def run_assistant_with_budget(
    question: str,
    services: AssistantServices,
    settings: Settings,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    locale: Optional[str] = None,
) -> tuple[AssistantResponse, bool]:
    """
    Run the assistant inside the request budget.

    Returns:
        ``(response, timed_out)``. On timeout the response is the degraded
        payload from :func:`build_timeout_response`.
    """
    started = time.perf_counter()
    try:
        response = await asyncio.wait_for(
            run_assistant(question, services, settings, page=page, page_size=page_size, locale=locale),
            timeout=settings.request_budget,
        )
    except asyncio.TimeoutError:
        elapsed_ms = round((time.perf_counter() - started) * 1000)
        logger.error("Assistant run exceeded %.1fs budget", settings.request_budget)
        return build_timeout_response(normalize_page(page), normalize_page_size(page_size), elapsed_ms), True
    return response, False
