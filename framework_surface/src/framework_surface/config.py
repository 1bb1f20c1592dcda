"""
Analysis configuration.

Heuristic names (registration calls, marker types, the server namespace)
live here so they can be tuned without touching the identification code.
"""
import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Optional

logger = logging.getLogger(__name__)

RECEIVER_CALLBACK_SUBSIGNATURE = "void onReceive(android.content.Context,android.content.Intent)"


@dataclass
class AnalysisConfig:
    """Inputs, heuristics and outputs for one analysis run."""

    # Inputs
    app_roots: list[str] = field(default_factory=list)  # sources scanned for entry points
    library_roots: list[str] = field(default_factory=list)  # sources used for type resolution only

    # Entry-point heuristics
    service_registration_methods: list[str] = field(default_factory=lambda: [
        "addService", "publishBinderService",
    ])
    receiver_registration_methods: list[str] = field(default_factory=lambda: [
        "registerReceiver", "registerReceiverAsUser",
    ])
    receiver_callback_subsignature: str = RECEIVER_CALLBACK_SUBSIGNATURE
    remote_interface_marker: str = "android.os.IInterface"
    binder_root: str = "android.os.Binder"
    server_namespace: str = "com.android.server"

    # Outputs
    paths_file: Optional[str] = "core_paths.txt"
    callgraph_file: Optional[str] = "callgraph.txt"
    index_json_file: Optional[str] = None
    console_summary: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisConfig":
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                logger.warning("Ignoring unknown config key: %s", key)
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, path: str) -> "AnalysisConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must hold a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def save(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
