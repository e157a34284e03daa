#!/usr/bin/env python3
"""
Beacon Practice Background Worker

A dedicated process that runs the periodic practice jobs for every tenant:
deadline reminders, hearing reminders, the overdue-task escalation sweep
and task_overdue automation events.

Usage:
    python worker.py [--once] [--interval=S] [--jobs=JOB1,JOB2]
"""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import Callable, Dict, List, Optional
import argparse

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("beacon.worker")

from app.supabase_client import get_supabase
from app import automation_rule_engine, escalation_engine, reminders, task_engine
from app.automation_rule_engine import AutomationEvent, AutomationEventType


def run_deadline_reminders(supabase, tenant_id: str) -> Dict:
    return reminders.send_deadline_reminders(supabase, tenant_id)


def run_hearing_reminders(supabase, tenant_id: str) -> Dict:
    return reminders.send_hearing_reminders(supabase, tenant_id)


def run_escalation_sweep(supabase, tenant_id: str) -> Dict:
    return escalation_engine.check_and_escalate_overdue_tasks(supabase, tenant_id)


def run_overdue_automation(supabase, tenant_id: str) -> Dict:
    """Fire a task_overdue automation event for each overdue task."""
    result = {"tasks": 0, "rules_executed": 0, "errors": []}
    for task in task_engine.get_overdue_tasks(supabase, tenant_id):
        result["tasks"] += 1
        event = AutomationEvent(
            event_type=AutomationEventType.TASK_OVERDUE.value,
            tenant_id=tenant_id,
            case_id=task.get("case_id"),
            task_id=task["id"],
            task_data=task,
            days_overdue=task_engine.days_overdue(task),
        )
        outcome = automation_rule_engine.process_event(supabase, event)
        result["rules_executed"] += outcome.get("rulesExecuted", 0)
        result["errors"].extend(outcome.get("errors", []))
    return result


JOBS: Dict[str, Callable] = {
    "deadline_reminders": run_deadline_reminders,
    "hearing_reminders": run_hearing_reminders,
    "escalations": run_escalation_sweep,
    "overdue_automation": run_overdue_automation,
}


class PracticeWorker:
    """
    Runs the configured jobs for every tenant, once or on an interval.
    """

    def __init__(self, interval: float = 900.0, jobs: Optional[List[str]] = None, supabase=None):
        self.interval = interval
        self.jobs = jobs or list(JOBS)
        self.supabase = supabase or get_supabase()
        self._running = False
        self._shutdown_event = asyncio.Event()

        logger.info(f"Worker initialized with jobs={self.jobs} interval={interval}s")

    def _tenant_ids(self) -> List[str]:
        res = self.supabase.table("tenants").select("id").execute()
        return [row["id"] for row in res.data or []]

    def run_cycle(self) -> Dict[str, Dict[str, Dict]]:
        """Run every job for every tenant. A failing job is logged and the cycle continues."""
        started = datetime.utcnow()
        summary: Dict[str, Dict[str, Dict]] = {}
        for tenant_id in self._tenant_ids():
            summary[tenant_id] = {}
            for name in self.jobs:
                try:
                    summary[tenant_id][name] = JOBS[name](self.supabase, tenant_id)
                except Exception as e:
                    logger.error(f"Job {name} failed for tenant {tenant_id}: {e}", exc_info=True)
                    summary[tenant_id][name] = {"error": str(e)}
        elapsed = (datetime.utcnow() - started).total_seconds()
        logger.info(f"Cycle finished for {len(summary)} tenant(s) in {elapsed:.1f}s")
        return summary

    async def start(self, once: bool = False):
        """Start the worker loop."""
        self._running = True

        loop = asyncio.get_event_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        while self._running:
            try:
                await asyncio.to_thread(self.run_cycle)
            except Exception as e:
                logger.error(f"Error in worker cycle: {e}")

            if once:
                break

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

        logger.info("Worker loop stopped")

    def _handle_shutdown(self):
        logger.info("Worker received shutdown signal")
        self._running = False
        self._shutdown_event.set()


def main():
    """Main entry point for the worker."""
    parser = argparse.ArgumentParser(description="Beacon Practice Background Worker")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit"
    )
    parser.add_argument(
        "--interval", "-i",
        type=float,
        default=float(os.environ.get("WORKER_INTERVAL", "900")),
        help="Seconds between cycles (default: 900)"
    )
    parser.add_argument(
        "--jobs", "-j",
        type=str,
        default=os.environ.get("WORKER_JOBS", ""),
        help=f"Comma-separated jobs to run (default: all of {', '.join(JOBS)})"
    )

    args = parser.parse_args()

    jobs = [j.strip() for j in args.jobs.split(",") if j.strip()] or None
    unknown = [j for j in jobs or [] if j not in JOBS]
    if unknown:
        logger.error(f"Unknown job(s): {', '.join(unknown)}")
        sys.exit(1)

    supabase = get_supabase()
    if not supabase:
        logger.error("Supabase is not configured, set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        sys.exit(1)

    worker = PracticeWorker(interval=args.interval, jobs=jobs, supabase=supabase)

    try:
        asyncio.run(worker.start(once=args.once))
    except KeyboardInterrupt:
        logger.info("Worker interrupted")

    logger.info("Worker stopped")


if __name__ == "__main__":
    main()
