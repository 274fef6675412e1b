"""
Throughput benchmark for record() with a lost-update check.

Hammers one engine from several threads, half on the shared
``requestCount`` field and half on an average field, then verifies the
final totals match the number of calls.

Usage:
    python -m scripts.benchmark --threads 8 --calls 50000
"""

from __future__ import annotations

import argparse
import statistics
import sys
import threading
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from services.metrics_engine import EngineConfig, MetricsEngine


def run_benchmark(threads: int = 4, calls: int = 10_000) -> bool:
    """Run ``calls`` records per thread. Returns True when no update was lost."""
    engine = MetricsEngine(
        EngineConfig(
            max_retention_ms=10 * 60 * 1000,
            aggregate_seconds=600,
            custom_fields=({"name": "latency", "type": "avg"},),
        ),
        start_retention=False,
    )

    per_thread_ms = []
    barrier = threading.Barrier(threads)

    def worker(i: int) -> None:
        field = "requestCount" if i % 2 == 0 else "latency"
        barrier.wait()
        start = time.perf_counter_ns()
        for n in range(calls):
            engine.record(field, n % 100)
        per_thread_ms.append((time.perf_counter_ns() - start) / 1_000_000)

    pool = [threading.Thread(target=worker, args=(i,)) for i in range(threads)]
    wall_start = time.perf_counter_ns()
    for t in pool:
        t.start()
    for t in pool:
        t.join()
    wall_ms = (time.perf_counter_ns() - wall_start) / 1_000_000

    snap = engine.snapshot()
    engine.close()

    count_threads = (threads + 1) // 2
    avg_threads = threads // 2
    counted = sum(b.total for b in snap.fields["requestCount"].buckets)
    sampled = sum(b.sample_count for b in snap.fields["latency"].buckets)
    total_calls = threads * calls

    print(f"\n{'='*50}")
    print(f" record() Benchmark ({threads} threads x {calls} calls)")
    print(f"{'='*50}")
    print(f"  Wall time:     {wall_ms:.1f} ms")
    print(f"  Throughput:    {total_calls / (wall_ms / 1000):,.0f} records/s")
    print(f"  Thread mean:   {statistics.mean(per_thread_ms):.1f} ms")
    print(f"  requestCount:  {counted:.0f} / {count_threads * calls}")
    print(f"  latency count: {sampled} / {avg_threads * calls}")
    print(f"{'='*50}")

    ok = counted == count_threads * calls and sampled == avg_threads * calls
    if ok:
        print("  PASS no lost updates")
    else:
        print("  FAIL lost updates detected")
    return ok


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark MetricsEngine.record throughput")
    parser.add_argument("--threads", "-t", type=int, default=4)
    parser.add_argument("--calls", "-n", type=int, default=10_000)
    args = parser.parse_args()
    if not run_benchmark(args.threads, args.calls):
        sys.exit(1)


if __name__ == "__main__":
    main()
