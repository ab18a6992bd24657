"""
Configuration management for uindex.
Single source of truth for all settings, plus the shared data model.
"""

import os
import yaml
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any, Tuple
from pathlib import Path
from datetime import datetime

ROOT_DIR = Path(__file__).parent.parent.parent

SCAN_MARKER_ROLE = "scan_marker"
SCAN_MARKER_LABEL = "No accessible UI elements found"
SCAN_MARKER_CLASS = "empty_scan"

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


@dataclass
class ActiveApplication:
    """Foreground application as reported by the platform scanner"""
    name: str
    window_title: str

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.window_title)


@dataclass
class UIElement:
    """One interactive element of an indexed window."""
    app_name: str
    window_title: str
    role: str
    label: str
    x: int
    y: int
    width: int
    height: int
    value: Optional[str] = None
    accessibility_id: str = ""
    class_name: str = ""
    automation_id: str = ""
    is_enabled: bool = True
    is_visible: bool = True
    confidence: float = 0.5
    last_seen: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.app_name, self.window_title)

    @property
    def center(self) -> Tuple[int, int]:
        return (self.x + self.width // 2, self.y + self.height // 2)

    @property
    def is_scan_marker(self) -> bool:
        return self.role == SCAN_MARKER_ROLE

    @property
    def is_actionable(self) -> bool:
        return self.is_enabled and self.is_visible

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['last_seen'] = self.last_seen.strftime(TIMESTAMP_FORMAT)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UIElement":
        last_seen = data.get('last_seen')
        if isinstance(last_seen, str):
            last_seen = datetime.strptime(last_seen, TIMESTAMP_FORMAT)
        elif last_seen is None:
            last_seen = datetime.now()

        return cls(
            app_name=data['app_name'],
            window_title=data['window_title'],
            role=data['role'],
            label=data['label'],
            x=int(data['x']),
            y=int(data['y']),
            width=int(data['width']),
            height=int(data['height']),
            value=data.get('value'),
            accessibility_id=data.get('accessibility_id', ""),
            class_name=data.get('class_name', ""),
            automation_id=data.get('automation_id', ""),
            is_enabled=bool(data.get('is_enabled', True)),
            is_visible=bool(data.get('is_visible', True)),
            confidence=float(data.get('confidence', 0.5)),
            last_seen=last_seen,
            id=data.get('id'),
        )


def make_scan_marker(app_name: str, window_title: str,
                     now: Optional[datetime] = None) -> UIElement:
    """Placeholder row recording that a window was scanned and had nothing usable."""
    now = now or datetime.now()
    return UIElement(
        app_name=app_name,
        window_title=window_title,
        role=SCAN_MARKER_ROLE,
        label=SCAN_MARKER_LABEL,
        x=0,
        y=0,
        width=0,
        height=0,
        value=None,
        accessibility_id="",
        class_name=SCAN_MARKER_CLASS,
        automation_id=f"scan_{int(now.timestamp() * 1000)}",
        is_enabled=False,
        is_visible=False,
        confidence=1.0,
        last_seen=now,
    )


@dataclass
class ActionResult:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    method_used: str = "none"


@dataclass
class ScannerConfig:
    """Platform scanner settings"""
    platform: Optional[str] = None        # None -> sys.platform
    timeout_seconds: float = 15.0
    max_output_bytes: int = 2 * 1024 * 1024
    max_children: int = 10
    max_depth: int = 3
    max_elements: int = 500


@dataclass
class StoreConfig:
    """Durable element store settings"""
    database_path: str = "data/ui_index.db"
    busy_timeout_seconds: float = 30.0
    freshness_minutes: int = 10
    staleness_hours: int = 1
    search_limit: int = 20


@dataclass
class CacheConfig:
    """Cache/sync settings"""
    enabled: bool = True
    backend: str = "memory"               # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    socket_timeout_seconds: float = 2.0
    key_prefix: str = "uiIndex:"
    snapshot_ttl_seconds: int = 300
    role_index_ttl_seconds: int = 120
    search_ttl_seconds: int = 60
    lock_ttl_seconds: int = 10
    max_active_apps: int = 20


@dataclass
class DaemonConfig:
    """Indexing daemon settings"""
    scan_interval_seconds: float = 3.0
    cleanup_interval_seconds: float = 600.0
    stop_timeout_seconds: float = 5.0


@dataclass
class LLMConfig:
    """Language Model settings"""
    model_path: str = str(ROOT_DIR / "models" / "qwen2.5-3b-instruct-q4_k_m.gguf")
    context_length: int = 4096
    max_tokens: int = 512
    temperature: float = 0.1
    threads: int = 4
    gpu_layers: int = -1


@dataclass
class PlannerConfig:
    """Action planner settings"""
    max_retries: int = 2
    timeout_seconds: float = 8.0
    retry_backoff_seconds: float = 1.0
    max_actions: int = 10
    elements_per_role: int = 10
    feasibility_sample: int = 20
    fallback_threshold: float = 0.7


@dataclass
class ExecutorConfig:
    """Action executor settings"""
    action_delay_ms: int = 100
    max_plan_duration_seconds: float = 300.0
    type_interval: float = 0.02
    failsafe: bool = True
    safe_corner: List[int] = field(default_factory=lambda: [0, 0])


SECTIONS = ('scanner', 'store', 'cache', 'daemon', 'llm', 'planner', 'executor')


@dataclass
class Config:
    """Main configuration"""
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    debug: bool = False
    log_level: str = "INFO"
    root_dir: Path = ROOT_DIR

    @classmethod
    def load(cls, path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file."""
        config = cls()

        if path and os.path.exists(path):
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}

            for section in SECTIONS:
                if section in data and isinstance(data[section], dict):
                    target = getattr(config, section)
                    for key, value in data[section].items():
                        if hasattr(target, key):
                            setattr(target, key, value)

            config.debug = bool(data.get('debug', False))
            config.log_level = data.get('log_level', 'INFO')

        return config

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file."""
        data: Dict[str, Any] = {
            section: asdict(getattr(self, section)) for section in SECTIONS
        }
        data['debug'] = self.debug
        data['log_level'] = self.log_level

        with open(path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False)


@dataclass
class ScanResult:
    """Outcome of one scan of the foreground window."""
    app_name: str
    window_title: str
    elements: List[UIElement] = field(default_factory=list)
    raw_count: int = 0
    rejected_count: int = 0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_empty(self) -> bool:
        return not any(not e.is_scan_marker for e in self.elements)
