"""Agent process launching and liveness probing."""

from .launcher import AgentLauncher, SpawnRecord
from .probe import LivenessProbe, SignalProbe, WindowsProbe, default_probe

__all__ = [
    "AgentLauncher",
    "LivenessProbe",
    "SignalProbe",
    "SpawnRecord",
    "WindowsProbe",
    "default_probe",
]
