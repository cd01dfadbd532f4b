"""Hammer the counter service concurrently and report lost increments.

Every request increments the counter, so with correct serialization each
returned value is unique. Values seen more than once are increments lost to
the read-modify-write race.
"""
import re
import sys
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Set

import requests

BODY = re.compile(r"running on (?P<host>.*), counter = (?P<counter>[0-9]+)")


def parse_body(text: str):
    m = BODY.fullmatch(text.strip())
    if m is None:
        raise ValueError(f"unexpected response body: {text!r}")
    return m.group("host"), int(m.group("counter"))


@dataclass
class RaceReport:
    total: int
    elapsed: float
    values: List[int] = field(default_factory=list)
    hosts: Set[str] = field(default_factory=set)

    @property
    def duplicates(self) -> int:
        return sum(n - 1 for n in Counter(self.values).values() if n > 1)

    @property
    def rps(self) -> float:
        return self.total / self.elapsed if self.elapsed > 0 else float("inf")


def worker(base: str, n: int, session_factory=None):
    s = (session_factory or requests.Session)()
    seen = []
    for _ in range(n):
        r = s.get(base)
        r.raise_for_status()
        seen.append(parse_body(r.text))
    return seen


USAGE = "usage: race_client.py [BASE_URL] [CLIENTS>=1] [CALLS_PER_CLIENT>=0]"


def run(base: str, clients: int, n: int, session_factory=None) -> RaceReport:
    if clients < 1:
        raise ValueError(f"clients must be at least 1, got {clients}")
    if n < 0:
        raise ValueError(f"calls per client must not be negative, got {n}")

    t0 = time.perf_counter()
    with ThreadPoolExecutor(max_workers=clients) as ex:
        futures = [ex.submit(worker, base, n, session_factory) for _ in range(clients)]
        results = [f.result() for f in futures]
    dt = time.perf_counter() - t0

    report = RaceReport(total=clients * n, elapsed=dt)
    for seen in results:
        for host, value in seen:
            report.hosts.add(host)
            report.values.append(value)
    return report


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    base = argv[0] if len(argv) > 0 else "http://127.0.0.1:8080/"
    try:
        clients = int(argv[1]) if len(argv) > 1 else 4
        n = int(argv[2]) if len(argv) > 2 else 100
    except ValueError:
        sys.exit(USAGE)
    if clients < 1 or n < 0:
        sys.exit(USAGE)

    report = run(base, clients, n)

    print(f"clients={clients} calls_per_client={n} total_calls={report.total}")
    print(f"time_sec={report.elapsed:.6f} rps={report.rps:.2f}")
    print(f"hosts={','.join(sorted(report.hosts))}")
    print(f"max_counter={max(report.values, default=0)} lost_increments={report.duplicates}")


if __name__ == "__main__":
    main()
