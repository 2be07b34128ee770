#!/usr/bin/env python3
"""
Example: Job Actions
Triggers a job for an issue, follows its log stream, and approves it when it
pauses for approval.

    python examples/job_actions.py acme/widgets 12 "Add dark mode"
"""
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from opsdeck import ApiError, ConflictError, JobStatus, JobSync, Settings, StreamDataType, load_env


async def main(repo: str, issue_num: int, title: str):
    load_env()
    sync = JobSync.from_settings(Settings.from_env())
    await sync.start()

    try:
        if not await sync.api.test_connection():
            print("❌ Server unreachable")
            return

        try:
            result = await sync.trigger_job(repo, issue_num, title, "plan-headless", cmd_label="plan")
        except ConflictError as exc:
            print(f"⚠️  {exc}")
            return
        job_id = result.get("job_id") or f"{repo.split('/')[-1]}-{issue_num}-plan-headless"
        print(f"🚀 Triggered {job_id}")

        def print_text(message):
            if message.data is not None and message.data.type is StreamDataType.TEXT:
                print(message.data.content, end="", flush=True)

        logs = sync.open_job_stream(job_id)
        logs.messages.subscribe(print_text)
        await logs.connect()

        done = asyncio.Event()
        approving = set()

        async def on_change(store):
            job = store.get_job(job_id)
            if job is None:
                return
            if job.status is JobStatus.WAITING_APPROVAL and job_id not in approving:
                approving.add(job_id)
                print("\n🛑 Waiting for approval - approving")
                try:
                    await sync.approve_job(job_id)
                except ApiError as exc:
                    print(f"❌ Approve failed: {exc}")
            elif job.is_terminal:
                print(f"\n🏁 {job.status.value} in {job.duration}s, cost {job.cost.formatted if job.cost else 'n/a'}")
                done.set()

        sync.store.changes.subscribe(on_change)
        await done.wait()
        await logs.dispose()
    finally:
        await sync.dispose()


if __name__ == "__main__":
    if len(sys.argv) != 4:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1], int(sys.argv[2]), sys.argv[3]))
