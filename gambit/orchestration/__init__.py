from .config import (
    PARAMETER_RULES,
    BufferConfig,
    ParameterRule,
    SessionConfig,
    load_session_config,
    to_snake_case,
)
from .loop import (
    ConfigApplied,
    ConfigError,
    ConfigInvalid,
    ConfigValid,
    ConfigurationChange,
    ConfigurationResult,
    ConfigurationUpdate,
    ControlError,
    ControlResult,
    ControlSuccess,
    IterationMetrics,
    PauseToken,
    TrainingLoopController,
    TrainingSession,
    TrainingState,
    TrainingStatus,
    aggregate_rates,
)

__all__ = [
    "PARAMETER_RULES",
    "BufferConfig",
    "ParameterRule",
    "SessionConfig",
    "load_session_config",
    "to_snake_case",
    "ConfigApplied",
    "ConfigError",
    "ConfigInvalid",
    "ConfigValid",
    "ConfigurationChange",
    "ConfigurationResult",
    "ConfigurationUpdate",
    "ControlError",
    "ControlResult",
    "ControlSuccess",
    "IterationMetrics",
    "PauseToken",
    "TrainingLoopController",
    "TrainingSession",
    "TrainingState",
    "TrainingStatus",
    "aggregate_rates",
]
