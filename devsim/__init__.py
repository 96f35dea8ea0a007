"""
IoT DevSim Core
Transmission lifecycle and orchestration engine for simulated IoT devices
"""

__version__ = "1.0.0"
