"""
Pipeline Orchestrator
LangGraph state machine sequencing discovery, fetching, canonicalization and persistence per source run
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, TypedDict
import asyncio
import logging
import time
import uuid

from langgraph.graph import StateGraph, START, END

from config.sources import CatalogSourceConfig
from database.client import CatalogDatabase
from database.models import CategoryNode
from pipeline.canonicalizer import canonicalize_many
from pipeline.discovery import CategoryDiscovery
from pipeline.fetcher import DetailFetcher, chunk_identities
from progress.tracker import ProgressTracker
from sources.client import CatalogClient
from sources.registry import SourceRegistry
from utils.errors import RunCancelled, SourceBusy, StoreWriteError
from utils.logging import ScrapingLogger, performance_logger

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    IDLE = "idle"
    DISCOVERING_CATEGORIES = "discovering_categories"
    COLLECTING_IDENTITIES = "collecting_identities"
    FETCHING_DETAILS = "fetching_details"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


class RunMode(str, Enum):
    ALL = "all"          # discovery + fetch + persist
    DETAILS = "details"  # re-fetch known identities only


class PipelineState(TypedDict, total=False):
    mode: str
    stage: str
    categories: List[CategoryNode]
    identities: List[str]
    identity_categories: Dict[str, Set[str]]
    payloads: Dict[str, Dict[str, Any]]
    error: Optional[str]


@dataclass
class RunSummary:
    source_id: str
    job_id: str
    mode: str
    status: str = PipelineStage.IDLE.value
    total_categories: int = 0
    successful_categories: int = 0
    empty_categories: int = 0
    failed_categories: int = 0
    identities_listed: int = 0
    unique_identities: int = 0
    duplicate_identities: int = 0
    chunks_total: int = 0
    chunks_failed: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    details_fetched: int = 0
    variants_processed: int = 0
    variants_saved: int = 0
    dropped_price: int = 0
    dropped_reference: int = 0
    dropped_color: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ScrapeRun:
    """One execution of the pipeline for one source. Not reusable."""

    def __init__(
        self,
        config: CatalogSourceConfig,
        db: CatalogDatabase,
        tracker: ProgressTracker,
        client,
        job_id: str,
        mode: RunMode = RunMode.ALL,
        resume: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.config = config
        self.db = db
        self.tracker = tracker
        self.job_id = job_id
        self.mode = RunMode(mode)
        self.resume = resume
        self.cancel_event = cancel_event or asyncio.Event()
        self.stage = PipelineStage.IDLE
        self.logger = ScrapingLogger(config.source_id, job_id)
        self.discovery = CategoryDiscovery(config, client, db, self.logger)
        self.fetcher = DetailFetcher(config, client, self.logger)
        self.summary = RunSummary(source_id=config.source_id, job_id=job_id, mode=self.mode.value)
        self.graph = self._build_graph()

    def _build_graph(self):
        """Build the LangGraph state machine for one run"""
        workflow = StateGraph(PipelineState)

        workflow.add_node("discover_categories", self._discover_categories)
        workflow.add_node("collect_identities", self._collect_identities)
        workflow.add_node("load_identities", self._load_identities)
        workflow.add_node("process_details", self._process_details)
        workflow.add_node("complete", self._complete)
        workflow.add_node("fail", self._fail)

        workflow.add_conditional_edges(
            START,
            self._select_entry,
            {RunMode.ALL.value: "discover_categories", RunMode.DETAILS.value: "load_identities"},
        )
        for node, next_node in (
            ("discover_categories", "collect_identities"),
            ("collect_identities", "process_details"),
            ("load_identities", "process_details"),
            ("process_details", "complete"),
        ):
            workflow.add_conditional_edges(
                node,
                self._route_after_stage,
                {"continue": next_node, "failed": "fail"},
            )
        workflow.add_edge("complete", END)
        workflow.add_edge("fail", END)

        return workflow.compile()

    # Routing

    def _select_entry(self, state: PipelineState) -> str:
        mode = state.get("mode", RunMode.ALL.value)
        if mode == RunMode.DETAILS.value and self.config.details_in_listing:
            # product payloads only exist in listings
            self.logger.info("🔁 Details mode re-reads listings for this source")
            return RunMode.ALL.value
        return mode

    def _route_after_stage(self, state: PipelineState) -> str:
        return "failed" if state.get("error") else "continue"

    def _should_stop(self) -> bool:
        return self.cancel_event.is_set()

    def _enter(self, stage: PipelineStage):
        self.stage = stage
        self.logger.debug(f"Stage -> {stage.value}")

    def _stage_failed(self, error: Exception) -> PipelineState:
        message = "cancelled" if isinstance(error, RunCancelled) else str(error) or type(error).__name__
        self.logger.error(f"❌ Stage {self.stage.value} failed: {message}")
        return {"stage": self.stage.value, "error": message}

    # Nodes

    async def _discover_categories(self, state: PipelineState) -> PipelineState:
        self._enter(PipelineStage.DISCOVERING_CATEGORIES)
        self.tracker.set_current_category(self.job_id, "category tree")
        try:
            categories = await self.discovery.discover_categories()
            if not categories:
                raise ValueError("category tree contained no product categories")
        except Exception as e:
            return self._stage_failed(e)

        self.summary.total_categories = len(categories)
        return {"stage": self.stage.value, "categories": categories}

    async def _collect_identities(self, state: PipelineState) -> PipelineState:
        self._enter(PipelineStage.COLLECTING_IDENTITIES)
        categories = state.get("categories") or []
        try:
            result = await self.discovery.collect_identities(
                categories,
                on_category=lambda category: self.tracker.set_current_category(self.job_id, category.path),
                should_stop=self._should_stop,
            )
        except Exception as e:
            return self._stage_failed(e)

        self.summary.successful_categories = result.successful_categories
        self.summary.empty_categories = result.empty_categories
        self.summary.failed_categories = result.failed_categories
        self.summary.identities_listed = result.total_listed
        self.summary.unique_identities = result.unique_identities
        self.summary.duplicate_identities = result.duplicate_identities

        if result.successful_categories == 0:
            return self._stage_failed(ValueError("every category listing failed"))
        return {
            "stage": self.stage.value,
            "identities": result.identities,
            "identity_categories": result.identity_categories,
            "payloads": result.payloads,
        }

    async def _load_identities(self, state: PipelineState) -> PipelineState:
        self._enter(PipelineStage.COLLECTING_IDENTITIES)
        self.tracker.set_current_category(self.job_id, "stored identities")
        try:
            identities = await self.db.load_identities(self.config.source_id, only_unprocessed=self.resume)
        except Exception as e:
            return self._stage_failed(e)

        self.summary.unique_identities = len(identities)
        self.logger.info(f"📥 Loaded {len(identities)} stored identities (resume={self.resume})")
        return {
            "stage": self.stage.value,
            "identities": [identity.product_id for identity in identities],
            "identity_categories": {i.product_id: set(i.categories) for i in identities},
        }

    async def _process_details(self, state: PipelineState) -> PipelineState:
        identities = state.get("identities") or []
        identity_categories = state.get("identity_categories") or {}
        payloads = state.get("payloads") or {}
        batches = chunk_identities(identities, self.config.batch_size)
        self.summary.batches_total = len(batches)
        self.tracker.set_total(self.job_id, len(identities))

        try:
            for index, batch in enumerate(batches):
                label = f"batch {index + 1}/{len(batches)}"
                self._enter(PipelineStage.FETCHING_DETAILS)
                self.tracker.set_current_category(self.job_id, label)

                details = await self._batch_details(batch, payloads)
                self.summary.details_fetched += len(details)

                canonical = canonicalize_many(details, self.config, identity_categories)
                self.summary.variants_processed += canonical.variants_seen
                self.summary.dropped_price += canonical.dropped_price
                self.summary.dropped_reference += canonical.dropped_reference
                self.summary.dropped_color += canonical.dropped_color

                self._enter(PipelineStage.PERSISTING)
                saved = await self._persist_batch(label, canonical.records, details)
                self.summary.variants_saved += saved
                self.tracker.increment_saved(self.job_id, saved)

                if index < len(batches) - 1:
                    if self._should_stop():
                        raise RunCancelled(f"{self.config.source_id} run cancelled")
                    await asyncio.sleep(self.config.batch_delay)
        except Exception as e:
            return self._stage_failed(e)

        return {"stage": self.stage.value}

    async def _batch_details(self, batch: List[str], payloads: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Raw details for one batch, from the listing payloads or the chunked fetcher."""
        if self.config.details_in_listing:
            if self._should_stop():
                raise RunCancelled(f"{self.config.source_id} run cancelled")
            self.tracker.increment_processed(self.job_id, len(batch))
            return [payloads[identity] for identity in batch if identity in payloads]

        fetched = await self.fetcher.fetch(
            batch,
            on_chunk=lambda _index, chunk, _products: self.tracker.increment_processed(self.job_id, len(chunk)),
            should_stop=self._should_stop,
        )
        self.summary.chunks_total += fetched.chunks_total
        self.summary.chunks_failed += fetched.chunks_failed
        return fetched.details

    async def _persist_batch(self, label: str, records, details: List[Dict[str, Any]]) -> int:
        """Write one batch. A rejected batch is counted and its identities stay unprocessed."""
        try:
            saved = await self.db.upsert_products(self.config, records)
        except StoreWriteError as e:
            self.summary.batches_failed += 1
            self.logger.error(f"❌ {label} not persisted: {e}")
            return 0

        fetched_ids = [str(raw.get("id")) for raw in details if raw.get("id") is not None]
        await self.db.mark_identities_processed(self.config.source_id, fetched_ids)
        self.logger.info(f"💾 {label}: saved {saved} variants")
        return saved

    async def _complete(self, state: PipelineState) -> PipelineState:
        self._enter(PipelineStage.COMPLETED)
        return {"stage": self.stage.value}

    async def _fail(self, state: PipelineState) -> PipelineState:
        self._enter(PipelineStage.FAILED)
        return {"stage": self.stage.value, "error": state.get("error")}

    # Entry point

    async def run(self) -> RunSummary:
        started = time.monotonic()
        if self.tracker.get_job(self.job_id) is None:
            self.tracker.start(self.job_id)
        self.logger.info(f"🚀 Starting {self.mode.value} run")

        try:
            final_state = await self.graph.ainvoke({"mode": self.mode.value, "stage": PipelineStage.IDLE.value})
            error = final_state.get("error")
        except Exception as e:
            self.logger.error(f"❌ Run crashed: {e}")
            self.stage = PipelineStage.FAILED
            error = str(e) or type(e).__name__

        self.summary.duration_seconds = round(time.monotonic() - started, 3)
        self.summary.status = PipelineStage.FAILED.value if error else PipelineStage.COMPLETED.value
        self.summary.error = error

        if error:
            self.tracker.fail(self.job_id, error, summary=self.summary.to_dict())
        else:
            self.tracker.complete(self.job_id, total_saved=self.summary.variants_saved,
                                  summary=self.summary.to_dict())

        performance_logger.log_scraping_performance(
            self.config.source_id,
            self.summary.variants_saved,
            self.summary.duration_seconds,
            errors=self.summary.chunks_failed + self.summary.batches_failed + self.summary.failed_categories,
        )
        return self.summary


@dataclass
class ActiveRun:
    job_id: str
    mode: RunMode
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)


class ScrapeOrchestrator:
    """Owns active runs. At most one run per source; sources run independently."""

    def __init__(
        self,
        registry: SourceRegistry,
        db: CatalogDatabase,
        tracker: ProgressTracker,
        client_factory: Callable[[CatalogSourceConfig], Any] = CatalogClient,
    ):
        self.registry = registry
        self.db = db
        self.tracker = tracker
        self.client_factory = client_factory
        self._active: Dict[str, ActiveRun] = {}
        self._tasks: Set[asyncio.Task] = set()

    @staticmethod
    def new_job_id(source_id: str, mode: RunMode) -> str:
        return f"{source_id}-{RunMode(mode).value}-{uuid.uuid4().hex[:8]}"

    def _reserve(self, source_id: str, mode: RunMode, job_id: Optional[str]) -> ActiveRun:
        self.registry.get(source_id)
        if source_id in self._active:
            raise SourceBusy(f"{source_id} already running as {self._active[source_id].job_id}")
        active = ActiveRun(job_id=job_id or self.new_job_id(source_id, mode), mode=RunMode(mode))
        self._active[source_id] = active
        return active

    async def _execute(self, source_id: str, active: ActiveRun, resume: bool,
                       overrides: Optional[Dict[str, Any]] = None) -> RunSummary:
        try:
            config = self.registry.get(source_id)
            if overrides:
                config = config.with_overrides(**overrides)
            async with self.client_factory(config) as client:
                run = ScrapeRun(
                    config, self.db, self.tracker, client,
                    job_id=active.job_id,
                    mode=active.mode,
                    resume=resume,
                    cancel_event=active.cancel_event,
                )
                return await run.run()
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"❌ {source_id} run {active.job_id} crashed: {message}")
            if self.tracker.get_job(active.job_id) is None:
                self.tracker.start(active.job_id)
            self.tracker.fail(active.job_id, message)
            raise
        finally:
            self._active.pop(source_id, None)

    async def run(self, source_id: str, mode: RunMode = RunMode.ALL, resume: bool = False,
                  job_id: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> RunSummary:
        """Run one source to completion in the current task."""
        active = self._reserve(source_id, mode, job_id)
        return await self._execute(source_id, active, resume, overrides)

    def start(self, source_id: str, mode: RunMode = RunMode.ALL, resume: bool = False) -> str:
        """Start a background run and return its job id."""
        active = self._reserve(source_id, mode, None)
        self.tracker.start(active.job_id)
        task = asyncio.create_task(self._execute(source_id, active, resume))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        logger.info(f"🚀 Started {active.mode.value} run for {source_id} as job {active.job_id}")
        return active.job_id

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ Background run crashed: {task.exception()}")

    def cancel(self, source_id: str) -> bool:
        """Request cooperative cancellation; honoured between categories, chunks and batches."""
        active = self._active.get(source_id)
        if active is None:
            return False
        active.cancel_event.set()
        logger.info(f"🛑 Cancellation requested for {source_id} ({active.job_id})")
        return True

    def active_runs(self) -> Dict[str, str]:
        return {source_id: active.job_id for source_id, active in self._active.items()}

    async def shutdown(self):
        for active in self._active.values():
            active.cancel_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
