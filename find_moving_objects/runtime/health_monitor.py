from find_moving_objects.utils.logger import get_logger


class HealthMonitor:
    def __init__(self, watchdog_ms: float = 0.0, name: str = ""):
        self.watchdog_ms = float(watchdog_ms or 0.0)
        self.name = name
        self.cycles = 0
        self.missed = 0
        self.logger = get_logger(__name__)

    def check_latency(self, latency_ms: float) -> bool:
        self.cycles += 1
        if self.watchdog_ms and latency_ms > self.watchdog_ms:
            self.missed += 1
            self.logger.warning("%s cycle latency budget exceeded: %.2f ms > %.2f ms", self.name or "Bank", latency_ms, self.watchdog_ms)
            return False
        return True

    def miss_ratio(self) -> float:
        return self.missed / self.cycles if self.cycles else 0.0
