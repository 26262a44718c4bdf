"""Built-in probes for the local host and the default phase list."""

from __future__ import annotations

from hostdoctor.config import Settings
from hostdoctor.probes.disk import probe_disk
from hostdoctor.probes.events import probe_events
from hostdoctor.probes.gpu import probe_gpu
from hostdoctor.probes.network import probe_network
from hostdoctor.probes.power import probe_battery
from hostdoctor.probes.security import probe_security
from hostdoctor.probes.software import probe_software
from hostdoctor.probes.startup import probe_startup
from hostdoctor.probes.system import probe_cpu, probe_ram, probe_system
from hostdoctor.probes.updates import probe_updates
from hostdoctor.scan.phases import Phase


def default_phases(settings: Settings) -> list[Phase]:
    """Phases in scan order; ``settings`` only shapes the estimates."""
    return [
        Phase("system", "system", probe_system, "Reading system overview", 1),
        Phase("cpu", "cpu", probe_cpu, "Sampling CPU load", settings.cpu_sample_count + 1),
        Phase("ram", "ram", probe_ram, "Checking memory", 1),
        Phase("disk", "disk", probe_disk, "Checking drives and reclaimable space", 8),
        Phase("gpu", "gpu", probe_gpu, "Checking graphics adapters", 3),
        Phase("battery", "battery", probe_battery, "Checking battery and power plan", 2),
        Phase("startup", "startup", probe_startup, "Listing startup programs", 2),
        Phase("network", "network", probe_network, "Testing network", 15),
        Phase("security", "security", probe_security, "Checking security status", 5),
        Phase("updates", "updates", probe_updates, "Checking for updates", 15),
        Phase("software", "software", probe_software, "Inventorying installed software", 8),
        Phase("events", "events", probe_events, "Reading event history", 10),
    ]


__all__ = ["default_phases"]
