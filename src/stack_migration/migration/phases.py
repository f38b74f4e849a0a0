"""Pipeline phases and migration statuses.

The phase order is fixed. Helpers here are the only place that knows about
ordering, so the orchestrator and state store never compare phases by name.
"""

from enum import Enum


class MigrationPhase(str, Enum):
    """Ordered stages of the migration pipeline."""

    INITIAL_SCAN = "initial_scan"
    DISCOVERY = "discovery"
    CLASSIFICATION = "classification"
    COMPARISON = "comparison"
    TEMPLATE_MODIFICATION = "template_modification"
    CODE_GENERATION = "code_generation"
    IMPORT_PREPARATION = "import_preparation"
    VERIFICATION = "verification"
    COMPLETE = "complete"


class MigrationStatus(str, Enum):
    """Overall status of a migration."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


PHASE_ORDER: tuple[MigrationPhase, ...] = tuple(MigrationPhase)

PHASE_DESCRIPTIONS: dict[MigrationPhase, str] = {
    MigrationPhase.INITIAL_SCAN: "Scan the source stack definition",
    MigrationPhase.DISCOVERY: "Discover resources and their deployed identifiers",
    MigrationPhase.CLASSIFICATION: "Classify resources for import or recreation",
    MigrationPhase.COMPARISON: "Compare source resources with the target description",
    MigrationPhase.TEMPLATE_MODIFICATION: "Remove adopted resources from the source template",
    MigrationPhase.CODE_GENERATION: "Generate the target stack",
    MigrationPhase.IMPORT_PREPARATION: "Prepare the resource import mapping",
    MigrationPhase.VERIFICATION: "Verify the generated target stack",
    MigrationPhase.COMPLETE: "Migration complete",
}

# Phases that irreversibly touch external resources; state is backed up first
CRITICAL_PHASES: frozenset[MigrationPhase] = frozenset(
    {
        MigrationPhase.TEMPLATE_MODIFICATION,
        MigrationPhase.IMPORT_PREPARATION,
        MigrationPhase.VERIFICATION,
    }
)

# Statuses cleanup must never prune
ACTIVE_STATUSES: frozenset[MigrationStatus] = frozenset(
    {MigrationStatus.PENDING, MigrationStatus.IN_PROGRESS, MigrationStatus.PAUSED}
)


def phase_index(phase: MigrationPhase) -> int:
    """Position of a phase in the pipeline."""
    return PHASE_ORDER.index(phase)


def first_phase() -> MigrationPhase:
    return PHASE_ORDER[0]


def last_phase() -> MigrationPhase:
    return PHASE_ORDER[-1]


def next_phase(phase: MigrationPhase) -> MigrationPhase | None:
    """Phase after ``phase``, or None when ``phase`` is the last one."""
    index = phase_index(phase)
    if index + 1 < len(PHASE_ORDER):
        return PHASE_ORDER[index + 1]
    return None


def phases_between(target: MigrationPhase, current: MigrationPhase) -> list[MigrationPhase]:
    """Phases after ``target`` up to and including ``current``, in pipeline order."""
    return list(PHASE_ORDER[phase_index(target) + 1 : phase_index(current) + 1])


def is_critical(phase: MigrationPhase) -> bool:
    return phase in CRITICAL_PHASES
