"""Failure taxonomy for a benchmark run.

Every fatal error names the pipeline stage it came from so the CLI can say
*where* a run died, not just why.
"""

from tpsbench.constants import Stage


class BenchError(Exception):
    stage: Stage | None = None

    def __init__(self, message: str, *, stage: Stage | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def report(self) -> str:
        cause = self.__cause__
        msg = f"[{self.stage}] {self.__class__.__name__}: {self}"
        if cause is not None:
            msg += f" (caused by {cause.__class__.__name__}: {cause})"
        return msg


class NodeStateError(BenchError):
    """A node handle was used outside the lifecycle state that allows it."""


class StartFailure(BenchError):
    stage = Stage.BUILD

    def __init__(self, node: str, message: str) -> None:
        super().__init__(f"{node}: {message}")
        self.node = node


class ConnectFailure(BenchError):
    stage = Stage.BUILD

    def __init__(self, node: str, peer: str, message: str) -> None:
        super().__init__(f"{node} -> {peer}: {message}")
        self.node = node
        self.peer = peer


class ReadinessTimeout(BenchError):
    stage = Stage.READINESS

    def __init__(self, expected: int, lagging: dict[str, int | None], timeout: float) -> None:
        detail = ", ".join(f"{n}={c}" for n, c in lagging.items())
        super().__init__(f"peers < {expected} after {timeout}s: {detail}")
        self.expected = expected
        self.lagging = lagging


class GenerationFailure(BenchError):
    stage = Stage.GENERATE

    def __init__(self, index: int, message: str) -> None:
        super().__init__(f"txn {index}: {message}")
        self.index = index


class SubmissionFailure(BenchError):
    stage = Stage.INJECT

    def __init__(self, index: int, engine_result: str | None, message: str) -> None:
        super().__init__(f"txn {index} ({engine_result}): {message}")
        self.index = index
        self.engine_result = engine_result


class ConvergenceTimeout(BenchError):
    stage = Stage.POLL

    def __init__(self, tx_hash: str, statuses: dict[str, str], timeout: float) -> None:
        detail = ", ".join(f"{n}={s}" for n, s in statuses.items())
        super().__init__(f"{tx_hash} not final everywhere after {timeout}s: {detail}")
        self.tx_hash = tx_hash
        self.statuses = statuses


class TeardownFailure(BenchError):
    stage = Stage.TEARDOWN

    def __init__(self, failures: dict[str, BaseException]) -> None:
        detail = ", ".join(f"{n}: {e!r}" for n, e in failures.items())
        super().__init__(f"{len(failures)} node(s) did not stop cleanly: {detail}")
        self.failures = failures


class DeadlineExceeded(BenchError):
    def __init__(self, timeout: float, stage: Stage | None) -> None:
        super().__init__(f"overall deadline of {timeout}s expired", stage=stage)
