"""Job dispatcher for the Seedstr marketplace.

Why not Celery / Dramatiq / Arq?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Jobs are not queued by us: they are discovered on a remote marketplace and
answered at most once. What this package has to get right is the boundary
between that marketplace and a CLI agent:

- Admission (dedup, concurrency cap, minimum budget) as one synchronous step.
- First-come-first-served slot claiming for shared (swarm) jobs.
- Retry with backoff and a no-tools fallback, driven by failure
  classification of agent errors.
- Per-job build directories so concurrent jobs never share output files.

A broker would add an operational dependency for a single-process worker
whose only durable state is a bounded set of processed job ids in SQLite.
One asyncio task per admitted job is enough for this scope.
"""
