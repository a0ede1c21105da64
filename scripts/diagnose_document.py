"""
Document Diagnostics — reconstruct a document's pipeline history.

Reads the record, its metadata event log, versions, current analysis and
tasks, and prints a timeline. Useful for documents stuck in processing or
failing repeatedly.

Usage:
    python -m scripts.diagnose_document <document_id> [--json]
"""
import argparse
import json
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))

from trustee_docs.core.entities.document import PIPELINE_STEPS, Document, ProcessingStatus
from trustee_docs.core.errors import DocumentNotFoundError
from trustee_docs.infrastructure.db.repository import DocumentRepository


def build_timeline(document: Document) -> list[dict]:
    """Events from the metadata log, oldest first."""
    events = [e for e in document.metadata.get("events", []) if isinstance(e, dict)]
    return sorted(events, key=lambda e: e.get("at") or "")


def diagnose(document: Document) -> dict:
    """Findings derived from the record alone."""
    meta = document.metadata
    done = [s for s in meta.get("steps_completed", []) if s in PIPELINE_STEPS]
    missing = [s for s in PIPELINE_STEPS if s not in done]
    findings = []

    if document.status in (ProcessingStatus.PROCESSING, ProcessingStatus.PROCESSING_FINANCIAL):
        findings.append(f"Still {document.status.value}; last step '{meta.get('last_step', '-')}' at {meta.get('last_step_at', '-')}")
    if meta.get("error"):
        findings.append(f"Failed at {meta.get('failure_stage')} with {meta['error']}: {meta.get('error_message')}")
    for previous in meta.get("previous_errors", []):
        findings.append(f"Earlier failure: {previous.get('error')} at {previous.get('failed_at')}")
    if meta.get("generator_errors"):
        findings.append(f"Generator errors: {'; '.join(meta['generator_errors'])}")
    if meta.get("analysis_degraded"):
        findings.append("Analysis is degraded (oracle output could not be parsed)")
    if meta.get("oracle_skipped"):
        findings.append("Oracle skipped: an existing analysis was reused")

    return {
        "document_id": document.id,
        "title": document.title,
        "status": document.status.value,
        "progress": document.progress,
        "retry_count": meta.get("retry_count", 0),
        "steps_completed": done,
        "steps_missing": missing,
        "findings": findings,
        "timeline": build_timeline(document),
    }


def main():
    parser = argparse.ArgumentParser(description="Reconstruct a document's pipeline history")
    parser.add_argument("document_id")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args()

    repo = DocumentRepository()
    try:
        document = repo.get(args.document_id)
    except DocumentNotFoundError:
        print(f"ERROR: document {args.document_id} not found")
        sys.exit(1)

    report = diagnose(document)
    report["versions"] = [
        {"number": v.version_number, "current": v.is_current, "path": v.storage_path}
        for v in repo.list_versions(document.id)
    ]
    analysis = repo.get_current_analysis(document.id)
    report["analysis"] = analysis.to_dict() if analysis else None
    report["tasks"] = [t.title for t in repo.list_tasks(document.id)]

    if args.json:
        print(json.dumps(report, indent=2, default=str))
        return

    print("=" * 70)
    print(f"  {report['title']}  ({report['document_id']})")
    print("=" * 70)
    print(f"  Status:   {report['status']} ({report['progress']}%)")
    print(f"  Retries:  {report['retry_count']}")
    print(f"  Steps:    {', '.join(report['steps_completed']) or '-'}")
    print(f"  Missing:  {', '.join(report['steps_missing']) or '-'}")
    print(f"  Versions: {len(report['versions'])}")
    print(f"  Tasks:    {len(report['tasks'])}")

    print(f"\n{'─'*70}\n  Findings\n{'─'*70}")
    for finding in report["findings"] or ["None"]:
        print(f"  - {finding}")

    print(f"\n{'─'*70}\n  Timeline\n{'─'*70}")
    for event in report["timeline"]:
        extra = {k: v for k, v in event.items() if k not in ("event", "at")}
        print(f"  {event.get('at', '?'):<28} {event.get('event', '?'):<18} {extra if extra else ''}")


if __name__ == "__main__":
    main()
