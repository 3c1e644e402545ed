from typing import Optional
from pydantic import BaseModel

from batchpress.config.models import ThermalConfig
from batchpress.domain.telemetry import TelemetrySample


class AdmissionDecision(BaseModel):
    slots: int
    effective_ceiling: int
    paused: bool = False
    reason: str = ""


class AdmissionController:
    """Decides how many pending tasks may start now.

    Holds no state between calls: the same inputs always give the same answer.
    Telemetry is only consulted when thermal management is enabled.
    """

    def __init__(self, config: Optional[ThermalConfig] = None):
        self.config = config or ThermalConfig()

    def decide(
        self,
        currently_running: int,
        ceiling: int,
        telemetry: Optional[TelemetrySample] = None,
    ) -> AdmissionDecision:
        ceiling = max(1, ceiling)
        effective = ceiling
        paused = False
        reason = ""

        if self.config.enabled and telemetry is not None:
            pressure = telemetry.thermal_pressure
            if pressure >= self.config.critical_threshold:
                if self.config.pause_on_overheat:
                    effective = 0
                    paused = True
                    reason = f"thermal pressure {pressure:.0f} >= {self.config.critical_threshold:.0f}"
                else:
                    effective = 1
                    reason = f"thermal pressure {pressure:.0f} critical, limiting to 1"
            elif pressure >= self.config.reduce_threshold or telemetry.cpu_usage > self.config.max_cpu_usage:
                effective = max(1, ceiling // 2)
                reason = f"thermal pressure {pressure:.0f}, cpu {telemetry.cpu_usage:.0f}%"

        slots = max(0, effective - currently_running)
        return AdmissionDecision(slots=slots, effective_ceiling=effective, paused=paused, reason=reason)

    def admit(
        self,
        currently_running: int,
        ceiling: int,
        telemetry: Optional[TelemetrySample] = None,
    ) -> int:
        return self.decide(currently_running, ceiling, telemetry).slots
