"""Schema definitions for deployment correlation sessions."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal

from govwatch.limits.schemas import Baseline

if TYPE_CHECKING:
    from govwatch.polling.poller import Poller

StatusSource = Literal["api", "record", "none"]

TERMINAL_RECORD_STATES: frozenset[str] = frozenset({"Succeeded", "Completed", "Failed", "Canceled"})
SUCCESS_RECORD_STATES: frozenset[str] = frozenset({"Succeeded", "Completed"})


@dataclass
class DeployStatus:
    """Normalized deployment status, whichever lookup path produced it.

    Attributes:
        id: Deployment identifier.
        done: Whether the platform reports the deployment as finished.
        success: Whether it finished successfully (None while unknown).
        state: Platform state string (InProgress, Succeeded, Failed, Unknown...).
        number_components_deployed / number_components_total: Component progress.
        number_tests_completed / number_tests_total: Test progress.
        error_message: Platform-reported failure message, if any.
        error: Lookup failure description when ``source == "none"``.
        source: Which path resolved the status (api, record, none).
    """

    id: str
    done: bool = False
    success: bool | None = None
    state: str = "InProgress"
    number_components_deployed: int = 0
    number_components_total: int = 0
    number_tests_completed: int = 0
    number_tests_total: int = 0
    error_message: str | None = None
    error: str | None = None
    source: StatusSource = "api"

    @property
    def is_terminal(self) -> bool:
        """True once polling should stop for this deployment."""
        return self.done or self.state == "Failed"

    @classmethod
    def from_deploy_result(cls, deployment_id: str, result: dict[str, Any]) -> "DeployStatus":
        """Build from a structured deploy-result payload (primary path)."""
        return cls(
            id=deployment_id,
            done=bool(result.get("done", False)),
            success=result.get("success"),
            state=result.get("status") or result.get("state") or "InProgress",
            number_components_deployed=int(result.get("numberComponentsDeployed") or 0),
            number_components_total=int(result.get("numberComponentsTotal") or 0),
            number_tests_completed=int(result.get("numberTestsCompleted") or 0),
            number_tests_total=int(result.get("numberTestsTotal") or 0),
            error_message=result.get("errorMessage"),
            source="api",
        )

    @classmethod
    def from_record(cls, deployment_id: str, record: dict[str, Any]) -> "DeployStatus":
        """Build from a DeployRequest record (fallback path)."""
        state = record.get("Status") or "Unknown"
        return cls(
            id=deployment_id,
            done=state in TERMINAL_RECORD_STATES,
            success=state in SUCCESS_RECORD_STATES,
            state=state,
            error_message=record.get("ErrorMessage"),
            source="record",
        )

    @classmethod
    def unknown(cls, deployment_id: str, error: str) -> "DeployStatus":
        """Minimal status returned when every lookup path failed."""
        return cls(id=deployment_id, done=False, state="Unknown", error=error, source="none")

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "done": self.done,
            "success": self.success,
            "state": self.state,
            "number_components_deployed": self.number_components_deployed,
            "number_components_total": self.number_components_total,
            "number_tests_completed": self.number_tests_completed,
            "number_tests_total": self.number_tests_total,
            "error_message": self.error_message,
            "error": self.error,
            "source": self.source,
        }


@dataclass
class OperationSession:
    """One correlation between an external operation and metric sampling.

    Lifecycle: created on start -> ``operation_id`` discovered (or supplied)
    -> ``is_active`` while polling -> inactive on terminal status, process
    exit, or explicit stop. At most one poll handle per session.
    """

    operation_id: str | None = None
    baseline: Baseline | None = None
    is_active: bool = False
    poll_handle: "Poller | None" = None
    stop_reason: str | None = None
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass
class ProcessResult:
    """Outcome of a wrapped process that exited successfully."""

    success: bool
    exit_code: int
    stdout: str
    stderr: str
    operation_id: str | None
