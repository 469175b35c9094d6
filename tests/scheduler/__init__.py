"""
Scheduler Test Suite.

- Persistence: uniqueness, compare-and-set, atomic batch claim, circuit breaker
- JobService: validation, lead time, due window, state machine, stats
- ExecutionQueue: ordering, sequential execution, failure capture
- Poller: single-flight ticks, lifecycle
- Recovery: interrupted jobs after restart
- End-to-end: schedule -> tick -> terminal
"""
