"""Shared enums and types for the consensus engine."""

from enum import StrEnum


class OperationClass(StrEnum):
    SUBMIT = "submit"
    UPDATE = "update"
    READ = "read"
    DELETE = "delete"


class StatusCategory(StrEnum):
    GATHERING_DATA = "gathering_data"
    EARLY_RELEASE = "early_release"
    ON_TRACK = "on_track"
    DELAY_LIKELY = "delay_likely"
    MAJOR_DELAY = "major_delay"


class Comparison(StrEnum):
    OPTIMISTIC = "optimistic"
    ALIGNED = "aligned"
    PESSIMISTIC = "pessimistic"


class ErrorKind(StrEnum):
    VALIDATION = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMIT_EXCEEDED"
    BOT_DETECTED = "BOT_DETECTED"
    TRANSIENT = "SERVER_ERROR"
