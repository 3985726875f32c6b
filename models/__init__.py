from .content import (
    Candidate,
    CanonicalUrl,
    ExtractedContent,
    PipelineResult,
    QualityReport,
    StageAttempt,
    StructureStats,
)
from .request import ResolveRequest, ResolveResponse
from .snapshot import (
    ResolveMode,
    ResolveResult,
    Snapshot,
    SnapshotVersion,
    VersionHistory,
    VersionSummary,
    VersionTrigger,
)

__all__ = [
    'Candidate', 'CanonicalUrl', 'ExtractedContent', 'PipelineResult',
    'QualityReport', 'StageAttempt', 'StructureStats',
    'ResolveRequest', 'ResolveResponse',
    'ResolveMode', 'ResolveResult', 'Snapshot', 'SnapshotVersion',
    'VersionHistory', 'VersionSummary', 'VersionTrigger',
]
