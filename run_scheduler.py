"""
Main Execution Script for the Hybrid Therapy Scheduler.
Loads a JSON scenario, runs one scheduling request end to end and exports the result.

Usage: python run_scheduler.py [scenario.json]
"""

import os
import sys
import logging
import json
from datetime import date

# Add current directory to path so imports work
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from models import Patient, PriorityToken, ResourcePool, Session, TherapyProtocol
from scheduler.config import LOG_LEVEL, SchedulerConfig
from scheduler.service import InMemoryRepository, SchedulingService

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("Main")

# --- CONFIGURATION ---
SCENARIO_FILENAME = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "sample_scenario.json")
EXPORT_FILENAME = "schedule_result.json"
# ---------------------

def load_scenario(filename: str):
    """
    Helper to load the scenario JSON and build the Pydantic objects.
    """
    try:
        with open(filename, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.error(f"❌ Scenario file {filename} not found or invalid: {e}")
        return None

    logger.info(f"📂 Loading scenario from {filename}...")

    repository = InMemoryRepository(
        protocols=[TherapyProtocol(**item) for item in data.get('protocols', [])],
        patients=[Patient(**item) for item in data.get('patients', [])],
        resources=ResourcePool(**data.get('resources', {})),
        sessions=[Session(**item) for item in data.get('existing_sessions', [])]
    )

    request = data.get('request', {})
    logger.info(
        f"✅ Scenario Loaded: {len(repository.protocols)} protocols, {len(repository.patients)} patients, "
        f"{len(repository.resources.therapists)} therapists, {len(repository.sessions)} existing sessions."
    )
    return repository, request

def export_result(result, filename: str):
    """Serializes the scheduling result for downstream consumers."""
    logger.info(f"💾 Exporting result to {filename}...")
    with open(filename, 'w') as f:
        json.dump(result.to_dict(), f, indent=2)
    logger.info("✅ Result exported.")

def print_progress(event: dict):
    if 'generation' in event or 'iteration' in event:
        return  # per-generation events
    logger.info(f"⏳ [{event['progress']:>5.1f}%] {event.get('message', event['phase'])}")

def main():
    filename = sys.argv[1] if len(sys.argv) > 1 else SCENARIO_FILENAME

    logger.info("🚀 Starting Hybrid Therapy Scheduler...")
    loaded = load_scenario(filename)
    if not loaded:
        logger.error("❌ No scenario available. Exiting.")
        return

    repository, request = loaded
    config = SchedulerConfig.from_env()
    # Scenario settings override the environment
    overrides = dict(request.get('config', {}))
    if request.get('start_date'):
        overrides['start_date'] = date.fromisoformat(request['start_date'])
    config = SchedulerConfig(**{**config.model_dump(), **overrides})

    priority = PriorityToken.of(request.get('priority', 'NORMAL'), request.get('reason', ''))
    service = SchedulingService(repository, config)

    result = service.schedule(
        request['therapy_id'],
        request['patient_id'],
        priority=priority,
        on_progress=print_progress
    )

    # --- REPORTING ---
    print("\n" + "="*50)
    print("📊 FINAL SCHEDULING REPORT")
    print("="*50)
    print(f"Success: {result.success}")
    print(result.metrics)

    for session in result.schedule:
        print(f"  [{session.step_number}] {session.start:%a %d %b %H:%M}-{session.end:%H:%M} "
              f"{session.action} | therapist={session.therapist_id} room={session.room_id}")

    for warning in result.warnings:
        print(f"⚠️  {warning['message']}")
    for error in result.errors:
        print(f"❌ [{error['phase']}] {error['message']}")
    for pending in result.pending_preemptions:
        print(f"🔔 Preemption awaiting confirmation: {pending.target.id} ({pending.decision.reason})")

    if result.explanation_summary:
        print("\n" + result.explanation_summary)

    export_result(result, EXPORT_FILENAME)
    print("\n✅ Scheduling Run Complete.")

if __name__ == "__main__":
    main()
