from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any, Literal

from services.migration_validation import MAX_DURATION_MS


MigrationStatusName = Literal[
    "idle",
    "building_json",
    "uploading_json",
    "processing_data",
    "completed",
    "failed",
]


class MigrationStartRequest(BaseModel):
    migrationType: str = Field(..., min_length=1, max_length=64)


class MigrationStartResponse(BaseModel):
    success: bool = True
    taskId: str


class MigrationProgressRequest(BaseModel):
    """Progress post from the game server (or the worker) for the current task."""
    status: MigrationStatusName
    message: str = Field(default="", max_length=1000)
    recordsProcessed: Optional[int] = Field(default=None, ge=0)
    recordsSkipped: Optional[int] = Field(default=None, ge=0)
    totalRecords: Optional[int] = Field(default=None, ge=0)
    error: Optional[str] = Field(default=None, max_length=4000)


class MigrationProgress(BaseModel):
    message: Optional[str] = None
    recordsProcessed: int = 0
    recordsSkipped: int = 0
    totalRecords: Optional[int] = None


class MigrationTask(BaseModel):
    id: str
    migrationType: str
    status: MigrationStatusName
    startedAt: Optional[str] = None
    completedAt: Optional[str] = None
    progress: MigrationProgress
    error: Optional[str] = None
    cancelRequested: bool = False


class MigrationHistoryEntry(BaseModel):
    id: Optional[str] = None
    migrationType: Optional[str] = None
    startedAt: Optional[str] = None
    completedAt: Optional[str] = None
    status: MigrationStatusName
    recordsProcessed: int = 0
    recordsSkipped: int = 0
    error: Optional[str] = None


class MigrationCooldown(BaseModel):
    onCooldown: bool
    remainingTime: Optional[int] = None  # milliseconds


class MigrationStatusResponse(BaseModel):
    currentMigration: Optional[MigrationTask] = None
    lastMigrationTimestamp: Optional[str] = None
    history: List[MigrationHistoryEntry] = []
    cooldown: MigrationCooldown


class MigrationActionResponse(BaseModel):
    success: bool
    message: Optional[str] = None


class MigrationUploadResponse(BaseModel):
    success: bool = True
    message: str
    fileSize: int


class PunishmentState(BaseModel):
    effectiveActive: bool
    effectiveExpiry: Optional[str] = None
    effectiveDuration: Optional[int] = None
    hasModifications: bool


class PunishmentResponse(PunishmentState):
    """Stored punishment document plus its derived effective state."""
    id: str
    type_ordinal: Optional[int] = None
    issuerName: Optional[str] = None
    issued: Optional[str] = None
    started: Optional[str] = None
    duration: Optional[int] = None
    modifications: List[Dict[str, Any]] = []

    model_config = ConfigDict(extra="allow")


class PlayerResponse(BaseModel):
    minecraftUuid: str
    usernames: List[Dict[str, Any]] = []
    notes: List[Dict[str, Any]] = []
    ipList: List[Dict[str, Any]] = []
    punishments: List[PunishmentResponse] = []
    pendingNotifications: List[Any] = []
    data: Dict[str, Any] = {}


class ActivePunishmentsResponse(BaseModel):
    minecraftUuid: str
    punishments: List[PunishmentResponse] = []


class ModificationCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=64)
    issuerName: str = Field(..., min_length=1, max_length=128)
    effectiveDuration: Optional[int] = Field(default=None, ge=-1, le=MAX_DURATION_MS)  # ms; 0 or -1 is permanent
    reason: Optional[str] = Field(default=None, max_length=10000)
    appealTicketId: Optional[str] = Field(default=None, max_length=64)


class ModificationResponse(BaseModel):
    success: bool = True
    modification: Dict[str, Any]
    punishment: PunishmentResponse
