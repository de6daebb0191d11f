"""
Signal resolution core for the trading decision engine
"""
from .config import EngineConfig, DEFAULT_CONFIG, load_config
from .errors import ConfigurationError
from .execution import (
    Phase,
    WaitingForThesis,
    BiasEstablished,
    WaitingForPullback,
    WaitingForEntry,
    Extension,
    InTrade,
)
from .models import (
    Bar,
    Direction,
    DomainEvent,
    EventType,
    Play,
    Verification,
    VerificationAction,
    VerificationRequest,
)
from .orchestrator import Orchestrator, HistoryBundle, TickDiagnostics

__all__ = [
    # Configuration
    'EngineConfig',
    'DEFAULT_CONFIG',
    'load_config',
    'ConfigurationError',

    # Execution state
    'Phase',
    'WaitingForThesis',
    'BiasEstablished',
    'WaitingForPullback',
    'WaitingForEntry',
    'Extension',
    'InTrade',

    # Domain types
    'Bar',
    'Direction',
    'DomainEvent',
    'EventType',
    'Play',
    'Verification',
    'VerificationAction',
    'VerificationRequest',

    # Engine
    'Orchestrator',
    'HistoryBundle',
    'TickDiagnostics',
]
