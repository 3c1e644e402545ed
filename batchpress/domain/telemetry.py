"""CPU/thermal telemetry readings and the pressure score derived from them."""

from typing import Optional
from pydantic import BaseModel, Field

TEMP_FLOOR_C = 40.0
TEMP_SPAN_C = 60.0


def estimate_temperature(cpu_usage: float) -> float:
    """Rough CPU temperature for platforms without sensors: 45C + 0.3C per % usage."""
    return max(40.0, min(95.0, 45.0 + cpu_usage * 0.3))


def calculate_thermal_pressure(cpu_temperature: float, cpu_usage: float) -> float:
    """0-100 score, an even blend of normalized temperature and CPU usage."""
    normalized_temp = min(100.0, max(0.0, (cpu_temperature - TEMP_FLOOR_C) / TEMP_SPAN_C * 100.0))
    normalized_usage = min(100.0, max(0.0, cpu_usage))
    return round(normalized_temp * 0.5 + normalized_usage * 0.5, 1)


def recommended_action(pressure: float, reduce_threshold: float, critical_threshold: float) -> str:
    if pressure >= critical_threshold:
        return "pause"
    if pressure >= reduce_threshold:
        return "reduce_concurrency"
    if pressure <= 30.0:
        return "resume"
    return "normal"


class TelemetrySample(BaseModel):
    cpu_usage: float = Field(ge=0.0, le=100.0)
    cpu_temperature: Optional[float] = None
    temperature_estimated: bool = False

    @property
    def effective_temperature(self) -> float:
        if self.cpu_temperature is None:
            return estimate_temperature(self.cpu_usage)
        return self.cpu_temperature

    @property
    def thermal_pressure(self) -> float:
        return calculate_thermal_pressure(self.effective_temperature, self.cpu_usage)
