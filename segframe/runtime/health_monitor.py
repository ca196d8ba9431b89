from typing import Dict, List

from segframe.utils.logger import get_logger


class HealthMonitor:
    """
    Latency watchdog. Accelerator work cannot be cancelled mid-flight, so a
    blown budget is reported rather than enforced.
    """

    def __init__(self, watchdog_ms: float = 0.0):
        self.watchdog_ms = float(watchdog_ms or 0.0)
        self.logger = get_logger(__name__)
        self.misses = 0

    def check_latency(self, stage: str, latency_ms: float) -> bool:
        budget = self.watchdog_ms
        if budget and latency_ms > budget:
            self.misses += 1
            self.logger.warning("Latency budget exceeded in %s: %.2f ms > %.2f ms", stage, latency_ms, budget)
            return False
        return True

    def check_frame(self, stages_ms: Dict[str, float]) -> List[str]:
        return [stage for stage, ms in stages_ms.items() if not self.check_latency(stage, ms)]
