"""Exception hierarchy for the alert rule engine.

Every error carries a machine-readable ``code`` and the HTTP status the API layer
maps it to; see ``src.alerting.main`` for the handler that renders ErrorResponse.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AlertEngineError(Exception):
    """Base exception for all alert engine errors."""

    code = "alert_engine_error"
    status_code = 500

    def __init__(self, message: str, meta: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.meta = meta or {}


# ---- Validation (rejected before any persistence or remote call) ----


class ValidationFailed(AlertEngineError):
    """Malformed or inconsistent rule definition."""

    code = "validation_failed"
    status_code = 400


class GeneratorMismatch(ValidationFailed):
    code = "generator_mismatch"


class DuplicateLabelMatcher(ValidationFailed):
    code = "duplicate_label_matcher"


class DurationTooLong(ValidationFailed):
    code = "duration_too_long"


class InvalidDuration(ValidationFailed):
    code = "invalid_duration"


class InvalidPattern(ValidationFailed):
    code = "invalid_pattern"


class EmptyLabelMatchers(ValidationFailed):
    code = "empty_label_matchers"


class ExprSyntaxError(ValidationFailed):
    code = "expr_syntax_error"


class ComparisonOperatorForbidden(ValidationFailed):
    code = "comparison_operator_forbidden"


class MissingNamespaceConstraint(ValidationFailed):
    code = "missing_namespace_constraint"


class EmptyReceivers(ValidationFailed):
    code = "empty_receivers"


class DuplicateChannel(ValidationFailed):
    code = "duplicate_channel"


class EmptyLevels(ValidationFailed):
    code = "empty_levels"


class DuplicateSeverity(ValidationFailed):
    code = "duplicate_severity"


class MissingInhibitLabels(ValidationFailed):
    code = "missing_inhibit_labels"


# ---- Derivation (catalog lookups and parsing of generator inputs) ----


class DerivationFailed(AlertEngineError):
    """A derived field could not be computed from the generator."""

    code = "derivation_failed"
    status_code = 400


class TemplateNotFound(DerivationFailed):
    code = "template_not_found"
    status_code = 404


class UnknownUnit(DerivationFailed):
    code = "unknown_unit"


class ChannelNotFound(DerivationFailed):
    code = "channel_not_found"
    status_code = 404


# ---- Persistence ----


class RuleAlreadyExists(AlertEngineError):
    code = "rule_already_exists"
    status_code = 409


class RuleNotFound(AlertEngineError):
    code = "rule_not_found"
    status_code = 404


class ClusterNotFound(AlertEngineError):
    code = "cluster_not_found"
    status_code = 404


class ClusterAlreadyExists(AlertEngineError):
    code = "cluster_already_exists"
    status_code = 409


class ChannelInUse(AlertEngineError):
    code = "channel_in_use"
    status_code = 409


class DefaultChannelProtected(AlertEngineError):
    code = "default_channel_protected"
    status_code = 409


class CollectorError(AlertEngineError):
    code = "collector_error"
    status_code = 400


# ---- Remote ----


class RemoteError(AlertEngineError):
    """A call to a cluster API, Prometheus or Alertmanager failed."""

    code = "remote_error"
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, meta: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, meta=meta)
        self.status = status


class ResourceNotFound(RemoteError):
    code = "resource_not_found"
    status_code = 404


class SyncError(AlertEngineError):
    """First failure of a multi-resource sync, tagged with the stage that failed."""

    code = "sync_failed"
    status_code = 502

    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"sync {stage} failed: {cause}", meta={"stage": stage})
        self.stage = stage
        self.cause = cause
