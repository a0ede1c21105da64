"""
Run the full pipeline on a local file, without the API.

  File → Upload (dedup) → Pipeline → Analysis / Tasks / Folder report

Usage:
    python -m scripts.analyze_file path/to/form31.pdf [--owner demo] [--resolution version]
"""
import argparse
import mimetypes
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))

from trustee_docs.api.dependencies import build_services
from trustee_docs.config.settings import get_settings
from trustee_docs.infrastructure.db.database import init_db


def main():
    parser = argparse.ArgumentParser(description="Analyze one document end to end")
    parser.add_argument("path")
    parser.add_argument("--owner", default="local-trustee")
    parser.add_argument("--resolution", choices=["replace", "version", "rename", "cancel"], default=None)
    args = parser.parse_args()

    path = Path(args.path)
    if not path.is_file():
        print(f"ERROR: {path} not found")
        sys.exit(1)

    settings = get_settings()
    init_db()
    services = build_services(settings)
    print(f"Oracle: {services.oracle.model_name}")

    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    outcome = services.uploads.execute(
        owner_id=args.owner,
        filename=path.name,
        data=path.read_bytes(),
        mime_type=mime_type,
        resolution=args.resolution,
    )

    if outcome.outcome == "duplicate":
        print(f"Duplicate of: {', '.join(d.id for d in outcome.duplicate.candidates)}")
        print("Re-run with --resolution replace|version|rename|cancel")
        sys.exit(2)
    if not outcome.needs_analysis:
        print(f"Upload {outcome.outcome}: {outcome.message}")
        return

    run = services.orchestrator.execute(outcome.document.id)

    print("=" * 70)
    print(f"  {path.name} → {run.status.value} ({run.progress}%)")
    print("=" * 70)
    if run.error:
        print(f"  Error: [{run.error}] {run.error_message}")
    if run.analysis:
        a = run.analysis
        print(f"  Form:       {a.form_number or '-'} {a.form_type}")
        print(f"  Confidence: {a.confidence}")
        print(f"  Risk:       {a.overall_risk} ({len(a.risk_factors)} factors)")
        for r in a.risk_factors:
            print(f"    - [{r.severity.value}] {r.description} ({r.regulatory_reference})")
        for name, value in sorted(a.extracted_fields.items()):
            print(f"  {name}: {value}")

    tasks = services.store.list_tasks(run.document_id)
    print(f"\n  Tasks: {len(tasks)}")
    for t in tasks:
        print(f"    - [{t.priority}] {t.title}")

    recommendation = services.store.get_pending_recommendation(run.document_id)
    if recommendation:
        print(f"\n  Suggested folder: {recommendation.folder_name} ({recommendation.confidence:.0f}%)")
        print(f"    {recommendation.reason}")
    print(f"\n  Latencies: {run.stage_latencies}")


if __name__ == "__main__":
    main()
