import threading
import time
import logging
from typing import Optional

import psutil

from batchpress.config.models import ThermalConfig
from batchpress.domain.events import ThermalStatusUpdated
from batchpress.domain.telemetry import TelemetrySample, recommended_action
from batchpress.infrastructure.event_bus import EventBus

# psutil sensor groups that report package/core temperatures, in preference order
CPU_SENSOR_NAMES = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "acpitz")


def read_cpu_temperature() -> Optional[float]:
    """Highest current CPU sensor reading in Celsius, or None when unavailable."""
    sensors = getattr(psutil, "sensors_temperatures", None)
    if sensors is None:
        return None
    try:
        readings = sensors() or {}
    except (OSError, RuntimeError):
        return None
    for name in CPU_SENSOR_NAMES:
        entries = readings.get(name)
        if entries:
            values = [entry.current for entry in entries if entry.current is not None]
            if values:
                return float(max(values))
    return None


class TelemetryMonitor:
    """Samples CPU usage and temperature in a background thread and publishes them."""

    def __init__(self, bus: EventBus, config: ThermalConfig):
        self.bus = bus
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._latest: Optional[TelemetrySample] = None

    def latest(self) -> Optional[TelemetrySample]:
        with self._lock:
            return self._latest

    def sample(self) -> TelemetrySample:
        """Takes one reading, stores it as latest and publishes ThermalStatusUpdated."""
        cpu_usage = float(psutil.cpu_percent(interval=None))
        temperature = read_cpu_temperature()
        sample = TelemetrySample(
            cpu_usage=max(0.0, min(100.0, cpu_usage)),
            cpu_temperature=temperature,
            temperature_estimated=temperature is None,
        )
        with self._lock:
            self._latest = sample

        pressure = sample.thermal_pressure
        action = recommended_action(pressure, self.config.reduce_threshold, self.config.critical_threshold)
        self.logger.debug(
            f"TELEMETRY: cpu={sample.cpu_usage:.0f}% temp={sample.effective_temperature:.0f}C "
            f"pressure={pressure:.0f} action={action}"
        )
        self.bus.publish(ThermalStatusUpdated(
            cpu_usage=sample.cpu_usage,
            cpu_temperature=sample.effective_temperature,
            thermal_pressure=pressure,
            recommended_action=action,
        ))
        return sample

    def _poll(self):
        """Polls psutil with compensated sleep."""
        next_tick = time.time()

        while not self._stop_event.is_set():
            try:
                self.sample()
            except (OSError, RuntimeError) as e:
                self.logger.debug(f"Telemetry: failed to sample: {e}")

            next_tick += self.config.sample_interval_s
            sleep_time = next_tick - time.time()
            if sleep_time > 0:
                self._stop_event.wait(sleep_time)

    def start(self):
        """Starts the monitoring thread."""
        if self._thread is not None:
            return

        if not self.config.enabled:
            self.logger.info("Thermal monitoring disabled")
            return

        # First cpu_percent(interval=None) call only primes psutil's counters
        psutil.cpu_percent(interval=None)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll, name="telemetry", daemon=True)
        self._thread.start()
        self.logger.info("Thermal monitoring started")

    def stop(self):
        """Stops the monitoring thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
            self.logger.info("Thermal monitoring stopped")
