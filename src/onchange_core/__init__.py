"""onchange-core: change detection and command dispatch engine for onchange."""

__version__ = "0.3.0"

# Models
from onchange_core.models import (
    VARIABLE_NAMES,
    ChangeEvent,
    CommandOutcome,
    DispatchState,
    ExecutionMode,
    PathVariables,
    RawEvent,
    WatchTarget,
)

# Templates and config
from onchange_core.template import PathTemplate, TemplateError
from onchange_core.config import ConfigError, ConfigSources, EngineConfig, Rule, RuleTable

# Engine parts
from onchange_core.debouncer import Debouncer
from onchange_core.dispatcher import Dispatcher, ExecutionError, ShellRunner
from onchange_core.notifier import ConsoleNotifier, LoggingNotifier, NoOpNotifier, OnchangeNotifier
from onchange_core.reporter import Reporter
from onchange_core.watchers import Watcher, WatchError

__all__ = [
    "__version__",
    # Models
    "VARIABLE_NAMES",
    "WatchTarget",
    "RawEvent",
    "ChangeEvent",
    "PathVariables",
    "ExecutionMode",
    "DispatchState",
    "CommandOutcome",
    # Templates and config
    "PathTemplate",
    "TemplateError",
    "ConfigError",
    "ConfigSources",
    "EngineConfig",
    "Rule",
    "RuleTable",
    # Engine
    "Debouncer",
    "Dispatcher",
    "ExecutionError",
    "ShellRunner",
    "Reporter",
    "Watcher",
    "WatchError",
    # Notifiers
    "OnchangeNotifier",
    "ConsoleNotifier",
    "NoOpNotifier",
    "LoggingNotifier",
]
