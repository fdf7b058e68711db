from __future__ import annotations

import dataclasses
from concurrent.futures import ThreadPoolExecutor
from threading import Event, Lock, Thread

from .domain_spec import parse
from .errors import InspectionError, ParseError, PublishError
from .events import log_event, utc_now
from .inspector import Inspector
from .publisher import Publisher
from .records import ServiceDeclaration, ServiceRecord
from .runtime import RuntimeState, TickReport
from .settings import Settings, settings as default_settings


class Reconciler:
    """Periodically republishes the declarations of running containers.

    Nothing is tracked between ticks: every tick rebuilds the full record set
    and upserts it with the configured TTL. Keys of containers that went away
    are no longer refreshed and expire on their own.
    """

    def __init__(
        self,
        inspector: Inspector,
        publisher: Publisher,
        settings: Settings | None = None,
        runtime: RuntimeState | None = None,
    ):
        self.inspector = inspector
        self.publisher = publisher
        self.settings = settings or default_settings
        self.runtime = runtime or RuntimeState()
        self._stop = Event()
        self._thr: Thread | None = None
        self._report_lock = Lock()

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._thr = Thread(target=self.run, name="beachhead-reconciler", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the loop thread. Returns False if it is still running."""
        if self._thr is None:
            return True
        self._thr.join(timeout)
        return not self._thr.is_alive()

    def run(self) -> None:
        """Tick until stopped. With a poll interval of 0, tick once and return."""
        interval = self.settings.poll_interval_s
        log_event("INFO", f"Reconciler started (ttl={self.settings.ttl_s}, refresh={interval}s)")
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                log_event("ERROR", f"Reconciler tick failed: {type(e).__name__}: {e}")
            if interval <= 0:
                break
            self.runtime.set_state("sleeping")
            self._stop.wait(interval)
        self.runtime.set_state("stopped")
        log_event("INFO", "Reconciler stopped")

    # -- one tick --------------------------------------------------------

    def run_once(self) -> TickReport:
        report = TickReport()
        self.runtime.set_state("polling")
        try:
            declarations = self.inspector.list_declarations()
        except InspectionError as e:
            log_event("ERROR", f"Inspection failed, skipping this tick: {e}")
            report.inspection_failed = True
            return self._finish(report)

        report.declarations = len(declarations)
        self.runtime.set_state("parsing")
        batches = [self._parse(decl, report) for decl in declarations]

        self.runtime.set_state("publishing")
        workers = max(1, self.settings.workers)
        if workers == 1 or len(batches) <= 1:
            for records in batches:
                self._publish_all(records, report)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="beachhead-publish") as pool:
                # list() surfaces exceptions raised inside workers
                list(pool.map(lambda records: self._publish_all(records, report), batches))
        return self._finish(report)

    def _finish(self, report: TickReport) -> TickReport:
        report.finished_at = utc_now()
        self.runtime.record_tick(report)
        return report

    def _publish_all(self, records: list[ServiceRecord], report: TickReport) -> None:
        for record in records:
            self._publish(record, report)

    def _parse(self, decl: ServiceDeclaration, report: TickReport) -> list[ServiceRecord]:
        if decl.raw is None:
            # Explicitly named containers are expected to carry a declaration.
            level = "WARN" if decl.label in self._named_containers() else "DEBUG"
            log_event(level, f"No {self.settings.envvar} variable on container", container=decl.label)
            return []
        try:
            result = parse(decl.raw, strict=self.settings.strict_parse)
        except ParseError as e:
            log_event("ERROR", f"Skipping declaration: {e}", container=decl.label)
            self._count(report, parse_errors=1)
            return []

        for err in result.errors:
            log_event("ERROR", f"Skipping domain spec: {err}", container=decl.label)
        self._count(report, parse_errors=len(result.errors), records=len(result.records))
        return [dataclasses.replace(r, host=decl.host, container=decl.label) for r in result.records]

    def _publish(self, record: ServiceRecord, report: TickReport) -> None:
        try:
            self.publisher.publish(record, self.settings.ttl_s)
        except PublishError as e:
            log_event("ERROR", f"Publishing failed: {e}", container=record.container, domain=record.domain)
            self._count(report, publish_errors=1)
            return
        except Exception as e:
            # Any other failure is scoped to this record too.
            log_event(
                "ERROR",
                f"Publishing failed unexpectedly: {type(e).__name__}: {e}",
                container=record.container,
                domain=record.domain,
            )
            self._count(report, publish_errors=1)
            return
        self._count(report, published=1)

    def _count(self, report: TickReport, **deltas: int) -> None:
        with self._report_lock:
            for name, delta in deltas.items():
                setattr(report, name, getattr(report, name) + delta)

    def _named_containers(self) -> set[str]:
        return set(getattr(self.inspector, "containers", None) or [])
