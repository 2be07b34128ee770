#!/usr/bin/env python3
"""
Example: Watch Jobs
Keeps a live job board in sync with the server and prints every change.

    OPSDECK_BASE_URL=http://localhost:8080 python examples/watch_jobs.py
"""
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from opsdeck import IssueStatus, JobStore, JobSync, Settings, configure_logging, load_env


def render(store: JobStore) -> None:
    print("\n" + "=" * 60)
    print(f"Revision {store.revision} - {len(store)} jobs, ${store.total_cost:.2f} spent")
    print("=" * 60)

    if store.needs_configuration:
        print("⚙️  Server URL not configured (set OPSDECK_BASE_URL)")
    elif store.last_error is not None:
        marker = "⏳" if store.error_is_transient else "❌"
        print(f"{marker} {store.last_error}")

    for status in IssueStatus:
        issues = store.issues_for_status(status)
        if not issues:
            continue
        print(f"\n[{status.value}]")
        for issue in issues:
            job = issue.latest_job
            print(f"  {issue.key:<24} {issue.title[:30]:<30} {job.short_command:<14} {job.status.value}")


async def main():
    load_env()
    settings = Settings.from_env()
    configure_logging(settings.logging.level, json_output=settings.logging.format == "json")

    async with JobSync.from_settings(settings) as sync:
        sync.store.changes.subscribe(render)
        sync.stream.states.subscribe(lambda state: print(f"\n🔌 stream {state.value}"))
        render(sync.store)

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            pass

    print("\n✅ Done!")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
