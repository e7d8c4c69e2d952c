"""
Run independent decoding stages, optionally on a thread pool.

Stages only read from their file source and each returns its own result, so
they can run in any order. Results always come back in submission order.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence, Tuple, TypeVar

T = TypeVar("T")

Stage = Tuple[str, Callable[[], T]]


def run_stages(stages: Sequence[Stage], max_workers: int = 1) -> List[T]:
    """
    Run (name, callable) stages and return their results in order.

    With max_workers <= 1 the stages run one after another on the calling
    thread. Otherwise every stage is submitted to a ThreadPoolExecutor; the
    pool is drained before returning and the first failing stage (in
    submission order) re-raises its exception.
    """
    if max_workers <= 1 or len(stages) <= 1:
        return [fn() for _, fn in stages]

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="rclevel") as pool:
        futures = [pool.submit(fn) for _, fn in stages]
        return [future.result() for future in futures]
